"""
Aggregation of students and grades into the analytics view statistics.

Every function here is pure: inputs are never mutated and malformed or
missing values degrade to zero, placeholders or exclusion from a
denominator instead of raising.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from app.charts import build_charts
from app.models import (
    AnalyticsData,
    AnalyticsFilters,
    AnalyticsSnapshot,
    Grade,
    GradeStats,
    OverallStats,
    ParallelStats,
    QuarterStats,
    RankedParallel,
    Student,
    StudentRow,
)
from app.parsers import (
    DANGER_LEVELS,
    QUARTER_COUNT,
    clean_optional_number,
    extract_parallel,
    is_numeric_label,
    is_positive_score,
    normalize_filter_value,
)
from app.risk import (
    effective_danger_level,
    format_delta,
    format_percentage,
    get_danger_label,
    get_rank_tier,
    is_at_risk,
)

logger = logging.getLogger(__name__)


def _mean(total: float, count: int) -> float:
    return total / count if count > 0 else 0.0


def _defined_average(values: Iterable[Optional[float]]) -> float:
    """Mean of the defined values; absent values are not counted as zero."""
    total = 0.0
    count = 0
    for value in values:
        number = clean_optional_number(value)
        if number is None:
            continue
        total += number
        count += 1
    return _mean(total, count)


def _danger_histogram(students: Sequence[Student]) -> Dict[int, int]:
    counts = {level: 0 for level in DANGER_LEVELS}
    for student in students:
        counts[effective_danger_level(student.danger_level)] += 1
    return counts


# --- Parallels --------------------------------------------------------------

def derive_parallels(grades: Sequence[Grade]) -> List[str]:
    """
    Unique parallels of the given grades, sorted numerically.

    A parallel is the leading digit run of a grade label ("10 A" -> "10");
    an explicit numeric ``parallel`` field is taken into account as well.
    Grades without either contribute nothing.
    """
    parallels: Set[str] = set()
    for grade in grades:
        if is_numeric_label(grade.parallel):
            parallels.add(grade.parallel.strip())
        parallel = extract_parallel(grade.grade)
        if parallel:
            parallels.add(parallel)
    return sorted(parallels, key=lambda p: (int(p), p))


def grade_in_parallel(grade: Grade, parallel: str) -> bool:
    """
    Whether a grade belongs to a parallel.

    Either the ``parallel`` field equals it, or the label starts with it.
    The label check is a plain prefix match, so "1" also claims "10 A".
    """
    if grade.parallel and grade.parallel.strip() == parallel:
        return True
    return (grade.grade or '').strip().startswith(parallel)


def filter_grades_by_parallel(grades: Sequence[Grade], parallel: Optional[str]) -> List[Grade]:
    """Grades of one parallel; ``None``/"all" returns every grade."""
    parallel = normalize_filter_value(parallel)
    if parallel is None:
        return list(grades)
    return [g for g in grades if grade_in_parallel(g, parallel)]


def compute_parallel_stats(
    parallel: str,
    grades: Sequence[Grade],
    students: Sequence[Student],
) -> ParallelStats:
    """
    Statistics for the students of one parallel.

    Students are matched through the grades of the parallel, so a student
    with an unresolved grade_id never appears here.
    """
    grade_ids = {g.id for g in filter_grades_by_parallel(grades, parallel)}
    members = [s for s in students if s.grade_id is not None and s.grade_id in grade_ids]

    counts = _danger_histogram(members)
    total = len(members)
    at_risk = counts[2] + counts[3]

    return ParallelStats(
        total=total,
        atRisk=at_risk,
        riskPercent=_mean(at_risk * 100.0, total),
        danger0=counts[0],
        danger1=counts[1],
        danger2=counts[2],
        danger3=counts[3],
        avgScore=_defined_average(s.avg_percentage for s in members),
        students=members,
    )


def compute_all_parallel_stats(
    grades: Sequence[Grade],
    students: Sequence[Student],
) -> Dict[str, ParallelStats]:
    """Stats for every parallel, keyed in ascending parallel order."""
    return {
        parallel: compute_parallel_stats(parallel, grades, students)
        for parallel in derive_parallels(grades)
    }


def rank_parallels_by_risk(parallel_stats: Dict[str, ParallelStats]) -> List[RankedParallel]:
    """
    Parallels ordered by descending risk percentage.

    The sort is stable: equal percentages keep the mapping's order.
    """
    ordered = sorted(parallel_stats.items(), key=lambda item: -item[1].riskPercent)
    ranking = []
    for position, (parallel, stats) in enumerate(ordered, start=1):
        ranking.append(RankedParallel(
            rank=position,
            parallel=parallel,
            riskPercent=stats.riskPercent,
            atRisk=stats.atRisk,
            total=stats.total,
            tier=get_rank_tier(position, stats.riskPercent),
        ))
    return ranking


# --- Grades, quarters, totals -----------------------------------------------

def compute_grade_comparison(students: Sequence[Student], grades: Sequence[Grade]) -> List[GradeStats]:
    """
    Per-grade totals, at-risk counts and average score, sorted by label.

    Grades with no students in ``students`` are left out.
    """
    by_id = {g.id: g for g in grades}
    members: Dict[int, List[Student]] = {}

    for student in students:
        grade = by_id.get(student.grade_id) if student.grade_id is not None else None
        if grade is None:
            continue
        members.setdefault(grade.id, []).append(student)

    result = [_grade_stats(by_id[grade_id], group) for grade_id, group in members.items()]
    return sorted(result, key=lambda e: (e.grade, e.grade_id))


def compute_grade_breakdown(grades: Sequence[Grade], students: Sequence[Student]) -> List[GradeStats]:
    """
    Danger histogram of every given grade, in the order given.

    Unlike the comparison, grades without students are listed with zeros.
    """
    members: Dict[int, List[Student]] = {g.id: [] for g in grades}
    for student in students:
        if student.grade_id is not None and student.grade_id in members:
            members[student.grade_id].append(student)
    return [_grade_stats(grade, members[grade.id]) for grade in grades]


def _grade_stats(grade: Grade, members: Sequence[Student]) -> GradeStats:
    counts = _danger_histogram(members)
    total = 0.0
    count = 0
    for student in members:
        score = clean_optional_number(student.avg_percentage)
        if score is not None:
            total += score
            count += 1

    return GradeStats(
        grade_id=grade.id,
        grade=grade.grade,
        curator_name=grade.curator_name,
        total=len(members),
        atRisk=counts[2] + counts[3],
        danger0=counts[0],
        danger1=counts[1],
        danger2=counts[2],
        danger3=counts[3],
        scoreSum=total,
        scoreCount=count,
        avgScore=_mean(total, count),
    )


def compute_quarter_performance(students: Sequence[Student]) -> List[QuarterStats]:
    """
    Average score per quarter over students with a positive score there.

    Zero, negative, missing and malformed scores are left out of both the
    sum and the count.
    """
    sums = [0.0] * QUARTER_COUNT
    counts = [0] * QUARTER_COUNT

    for student in students:
        scores = student.actual_scores or []
        for idx, score in enumerate(scores[:QUARTER_COUNT]):
            if is_positive_score(score):
                sums[idx] += float(score)
                counts[idx] += 1

    return [
        QuarterStats(quarter=idx, total=sums[idx], count=counts[idx], average=_mean(sums[idx], counts[idx]))
        for idx in range(QUARTER_COUNT)
    ]


def compute_overall_stats(students: Sequence[Student]) -> OverallStats:
    """Total, danger histogram, average score and trend counts."""
    counts = _danger_histogram(students)
    improving = 0
    declining = 0
    for student in students:
        delta = clean_optional_number(student.delta_percentage)
        if delta is None:
            continue
        if delta > 0:
            improving += 1
        elif delta < 0:
            declining += 1

    return OverallStats(
        total=len(students),
        dangerCounts=counts,
        avgPercentage=_defined_average(s.avg_percentage for s in students),
        improving=improving,
        declining=declining,
        atRisk=counts[2] + counts[3],
    )


# --- Filters ----------------------------------------------------------------

def matches_search(student: Student, query: Optional[str]) -> bool:
    """Case-insensitive substring match on name or email."""
    if not query:
        return True
    query = query.lower()
    if query in (student.name or '').lower():
        return True
    return bool(student.email) and query in student.email.lower()


def filter_students(
    students: Sequence[Student],
    grades: Sequence[Grade],
    filters: AnalyticsFilters,
) -> List[Student]:
    """
    Apply the parallel, grade, danger level and search filters.

    Each filter is an independent predicate over a single student, so the
    result does not depend on the order they are applied in. Unknown danger
    levels count as Low, as in the histograms.
    """
    parallel = normalize_filter_value(filters.parallel)
    parallel_ids = None
    if parallel is not None:
        parallel_ids = {g.id for g in filter_grades_by_parallel(grades, parallel)}
    query = (filters.search or '').strip()

    def keep(student: Student) -> bool:
        if parallel_ids is not None and student.grade_id not in parallel_ids:
            return False
        if filters.grade_id is not None and student.grade_id != filters.grade_id:
            return False
        if (filters.danger_level is not None
                and effective_danger_level(student.danger_level) != filters.danger_level):
            return False
        return matches_search(student, query)

    return [s for s in students if keep(s)]


# --- Drill-downs ------------------------------------------------------------

def students_by_danger_level(students: Sequence[Student], level: int) -> List[Student]:
    return [s for s in students if effective_danger_level(s.danger_level) == level]


def at_risk_students(students: Sequence[Student]) -> List[Student]:
    return [s for s in students if is_at_risk(s.danger_level)]


def parallel_students(
    parallel_stats: Dict[str, ParallelStats],
    parallel: str,
    risk_level: Optional[int] = None,
    at_risk_only: bool = False,
) -> Optional[List[Student]]:
    """Students behind a parallel's stats; None for an unknown parallel."""
    stats = parallel_stats.get(parallel)
    if stats is None:
        return None
    members = list(stats.students)
    if risk_level is not None:
        members = students_by_danger_level(members, risk_level)
    if at_risk_only:
        members = at_risk_students(members)
    return members


def grade_students(
    students: Sequence[Student],
    grades: Sequence[Grade],
    grade_label: str,
) -> Optional[List[Student]]:
    """Students of the first grade with the given label; None if unknown."""
    grade = next((g for g in grades if g.grade == grade_label), None)
    if grade is None:
        return None
    return [s for s in students if s.grade_id == grade.id]


def grade_name(grades: Sequence[Grade], grade_id: Optional[int], default: str = '-') -> str:
    for grade in grades:
        if grade.id == grade_id:
            return grade.grade or default
    return default


def student_rows(students: Sequence[Student], grades: Sequence[Grade]) -> List[StudentRow]:
    """
    Students with display values for drill-down tables.

    Unknown average, delta or danger level render as a dash; the danger
    label is not defaulted to Low here.
    """
    return [
        StudentRow(
            **student.model_dump(),
            gradeName=grade_name(grades, student.grade_id),
            averageDisplay=format_percentage(student.avg_percentage),
            deltaDisplay=format_delta(student.delta_percentage),
            dangerLabel=get_danger_label(student.danger_level),
        )
        for student in students
    ]


# --- Snapshot ---------------------------------------------------------------

def build_snapshot(data: AnalyticsData, filters: AnalyticsFilters) -> AnalyticsSnapshot:
    """
    Compute every derived statistic of the analytics view.

    Parallel stats and the ranking cover all students; the headline
    numbers, grade comparison and breakdown, quarter performance and
    charts follow the filters.
    """
    grades = list(data.grades)
    parallel_grades = filter_grades_by_parallel(grades, filters.parallel)
    students = filter_students(data.students, grades, filters)
    parallel_stats = compute_all_parallel_stats(grades, data.students)
    overall = compute_overall_stats(students)
    grade_comparison = compute_grade_comparison(students, grades)
    quarters = compute_quarter_performance(students)

    return AnalyticsSnapshot(
        filters=filters,
        parallels=derive_parallels(grades),
        grades=parallel_grades,
        students=students,
        overall=overall,
        parallelStats=parallel_stats,
        ranking=rank_parallels_by_risk(parallel_stats),
        gradeComparison=grade_comparison,
        gradeBreakdown=compute_grade_breakdown(parallel_grades, students),
        quarterPerformance=quarters,
        charts=build_charts(overall, parallel_stats, grade_comparison, quarters),
    )


class Aggregator:
    """
    Snapshot builder that remembers only its last input/output pair.

    Asking again with equal data and filters returns the cached snapshot;
    anything else recomputes from scratch.
    """

    def __init__(self):
        self._last_input = None
        self._last_output: Optional[AnalyticsSnapshot] = None

    def snapshot(self, data: AnalyticsData, filters: AnalyticsFilters) -> AnalyticsSnapshot:
        key = (data, filters)
        if self._last_output is not None and self._last_input == key:
            return self._last_output
        logger.debug(
            "Recomputing analytics for %d students, %d grades",
            len(data.students), len(data.grades)
        )
        snapshot = build_snapshot(data, filters)
        self._last_input = (data.model_copy(deep=True), filters.model_copy(deep=True))
        self._last_output = snapshot
        return snapshot
