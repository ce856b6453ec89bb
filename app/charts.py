"""Chart-ready series for the analytics dashboards."""

from typing import Dict, List, Sequence

from app.models import ChartDataset, ChartSeries, GradeStats, OverallStats, ParallelStats, QuarterStats
from app.parsers import is_numeric_label
from app.risk import DANGER_COLORS, DANGER_LABELS, get_band_color, get_risk_band

QUARTER_LABELS = ['Quarter 1', 'Quarter 2', 'Quarter 3', 'Quarter 4']

BLUE = '59, 130, 246'
RED = '239, 68, 68'


def _round1(value: float) -> float:
    return round(value, 1)


def parallel_label(parallel: str) -> str:
    return f'Grade {parallel}'


def _numeric_order(parallels) -> List[str]:
    def key(p):
        return (int(p), p) if is_numeric_label(p) else (float('inf'), p)
    return sorted(parallels, key=key)


def danger_distribution_chart(overall: OverallStats) -> ChartSeries:
    """Pie chart of the danger level histogram."""
    levels = sorted(DANGER_LABELS)
    return ChartSeries(
        kind='pie',
        labels=[DANGER_LABELS[level] for level in levels],
        datasets=[ChartDataset(
            label='Students',
            data=[overall.dangerCounts.get(level, 0) for level in levels],
            backgroundColor=[DANGER_COLORS[level] for level in levels],
            borderColor='#fff',
        )],
    )


def grade_comparison_chart(grade_stats: Sequence[GradeStats]) -> ChartSeries:
    """Bar chart of total vs at-risk students per grade."""
    return ChartSeries(
        kind='bar',
        labels=[entry.grade for entry in grade_stats],
        datasets=[
            ChartDataset(
                label='Total students',
                data=[entry.total for entry in grade_stats],
                backgroundColor=f'rgba({BLUE}, 0.7)',
                borderColor=f'rgb({BLUE})',
            ),
            ChartDataset(
                label='At risk',
                data=[entry.atRisk for entry in grade_stats],
                backgroundColor=f'rgba({RED}, 0.7)',
                borderColor=f'rgb({RED})',
            ),
        ],
    )


def parallel_comparison_chart(parallel_stats: Dict[str, ParallelStats]) -> ChartSeries:
    """Stacked bar of the danger histogram of every parallel."""
    parallels = _numeric_order(parallel_stats)
    datasets = []
    for level in sorted(DANGER_LABELS):
        color = DANGER_COLORS[level]
        datasets.append(ChartDataset(
            label=f'{DANGER_LABELS[level]} risk',
            data=[getattr(parallel_stats[p], f'danger{level}') for p in parallels],
            backgroundColor=color,
            borderColor=color,
        ))
    return ChartSeries(
        kind='bar',
        labels=[parallel_label(p) for p in parallels],
        datasets=datasets,
    )


def risk_percentage_chart(parallel_stats: Dict[str, ParallelStats]) -> ChartSeries:
    """Bar of the at-risk share of every parallel, coloured by risk band."""
    parallels = _numeric_order(parallel_stats)
    bands = [get_risk_band(parallel_stats[p].riskPercent) for p in parallels]
    return ChartSeries(
        kind='bar',
        labels=[parallel_label(p) for p in parallels],
        datasets=[ChartDataset(
            label='% of students at risk',
            data=[_round1(parallel_stats[p].riskPercent) for p in parallels],
            backgroundColor=[get_band_color(band, 0.7) for band in bands],
            borderColor=[get_band_color(band) for band in bands],
        )],
    )


def quarter_performance_chart(quarters: Sequence[QuarterStats]) -> ChartSeries:
    return ChartSeries(
        kind='line',
        labels=QUARTER_LABELS[:len(quarters)],
        datasets=[ChartDataset(
            label='Average score',
            data=[_round1(q.average) for q in quarters],
            backgroundColor=f'rgba({BLUE}, 0.5)',
            borderColor=f'rgb({BLUE})',
        )],
    )


def build_charts(
    overall: OverallStats,
    parallel_stats: Dict[str, ParallelStats],
    grade_stats: Sequence[GradeStats],
    quarters: Sequence[QuarterStats],
) -> Dict[str, ChartSeries]:
    return {
        'dangerDistribution': danger_distribution_chart(overall),
        'gradeComparison': grade_comparison_chart(grade_stats),
        'parallelComparison': parallel_comparison_chart(parallel_stats),
        'riskPercentage': risk_percentage_chart(parallel_stats),
        'quarterPerformance': quarter_performance_chart(quarters),
    }
