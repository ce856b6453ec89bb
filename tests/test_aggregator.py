"""Unit tests for the aggregation module."""

from itertools import permutations

import pytest

from app.aggregator import (
    Aggregator,
    at_risk_students,
    build_snapshot,
    compute_all_parallel_stats,
    compute_grade_breakdown,
    compute_grade_comparison,
    compute_overall_stats,
    compute_parallel_stats,
    compute_quarter_performance,
    derive_parallels,
    filter_grades_by_parallel,
    filter_students,
    grade_students,
    parallel_students,
    rank_parallels_by_risk,
    student_rows,
    students_by_danger_level,
)
from app.models import AnalyticsData, AnalyticsFilters, Grade, ParallelStats, Student


def test_parallel_stats_example():
    """Two grades, three students: parallel 10 is half at risk."""
    grades = [
        Grade(id=1, grade="10 A", parallel="10"),
        Grade(id=2, grade="11 B", parallel="11"),
    ]
    students = [
        Student(id=1, name="a", grade_id=1, danger_level=2),
        Student(id=2, name="b", grade_id=1, danger_level=0),
        Student(id=3, name="c", grade_id=2, danger_level=3),
    ]

    stats = compute_parallel_stats("10", grades, students)

    assert stats.total == 2
    assert stats.danger0 == 1
    assert stats.danger1 == 0
    assert stats.danger2 == 1
    assert stats.danger3 == 0
    assert stats.atRisk == 1
    assert stats.riskPercent == 50.0
    assert [s.id for s in stats.students] == [1, 2]


def test_quarter_performance_example():
    """Zero, negative and missing scores are left out of sum and count."""
    students = [
        Student(id=1, name="a", actual_scores=[80, 0, 90, None]),
        Student(id=2, name="b", actual_scores=[70, 85, -5, 60]),
    ]

    quarters = compute_quarter_performance(students)

    assert [q.average for q in quarters] == [75.0, 85.0, 90.0, 60.0]
    assert [q.count for q in quarters] == [2, 1, 1, 1]


def test_quarter_performance_over_fixture(students):
    quarters = compute_quarter_performance(students)

    assert quarters[0].average == pytest.approx(67.5)
    assert quarters[1].average == pytest.approx(200 / 3)
    assert quarters[2].average == pytest.approx(73.5)
    assert quarters[3].average == pytest.approx(60.5)


def test_quarter_performance_empty_and_extra_quarters():
    """No scores degrade to zero; entries past the fourth quarter are ignored."""
    assert [q.average for q in compute_quarter_performance([])] == [0.0] * 4

    students = [Student(id=1, name="a", actual_scores=[50, 60, 70, 80, 90])]
    quarters = compute_quarter_performance(students)
    assert len(quarters) == 4
    assert quarters[3].average == 80.0


def test_derive_parallels(grades):
    """Parallels are sorted numerically, not lexically."""
    assert derive_parallels(grades) == ["9", "10", "11"]


def test_derive_parallels_skips_labels_without_digits():
    grades = [
        Grade(id=1, grade="Prep", parallel=None),
        Grade(id=2, grade="A 10", parallel=None),
        Grade(id=3, grade="2 B"),
        Grade(id=4, grade="Senior", parallel="12"),
    ]
    assert derive_parallels(grades) == ["2", "12"]
    assert derive_parallels([]) == []


def test_filter_grades_by_parallel(grades):
    assert [g.id for g in filter_grades_by_parallel(grades, "10")] == [1, 2]
    # label fallback when the parallel field is unset
    assert [g.id for g in filter_grades_by_parallel(grades, "9")] == [4]
    assert filter_grades_by_parallel(grades, "all") == grades
    assert filter_grades_by_parallel(grades, None) == grades


def test_filter_grades_by_parallel_plain_prefix():
    """The label fallback is a plain prefix match."""
    grades = [
        Grade(id=1, grade="1 A"),
        Grade(id=2, grade="10 A"),
        Grade(id=3, grade="11 B", parallel="11"),
        Grade(id=4, grade="1Б"),
        Grade(id=5, grade="2 A"),
    ]
    assert [g.id for g in filter_grades_by_parallel(grades, "1")] == [1, 2, 3, 4]
    assert [g.id for g in filter_grades_by_parallel([Grade(id=1, grade="10 A")], "1")] == [1]


def test_non_ascii_digit_parallel_field_is_ignored():
    """A parallel field like "²" is not numeric and does not break sorting."""
    grades = [
        Grade(id=1, grade="10 A", parallel="²"),
        Grade(id=2, grade="9 B", parallel="٣"),
    ]
    students = [Student(id=1, name="a", grade_id=1, danger_level=2)]

    assert derive_parallels(grades) == ["9", "10"]

    snapshot = build_snapshot(AnalyticsData(grades=grades, students=students), AnalyticsFilters())
    assert list(snapshot.parallelStats) == ["9", "10"]
    assert snapshot.parallelStats["10"].riskPercent == 100.0


def test_all_parallel_stats(grades, students):
    stats = compute_all_parallel_stats(grades, students)

    assert list(stats) == ["9", "10", "11"]

    tenth = stats["10"]
    assert tenth.total == 4
    assert (tenth.danger0, tenth.danger1, tenth.danger2, tenth.danger3) == (2, 1, 1, 0)
    assert tenth.atRisk == 1
    assert tenth.riskPercent == 25.0
    # Ivan has no average and is left out of the denominator
    assert tenth.avgScore == pytest.approx((75.0 + 57.5 + 92.0) / 3)

    assert stats["11"].riskPercent == 100.0
    assert stats["9"].avgScore == 0.0


def test_histogram_sums_to_total(grades, students):
    """Every student of a group lands in exactly one danger bucket."""
    for stats in compute_all_parallel_stats(grades, students).values():
        assert stats.danger0 + stats.danger1 + stats.danger2 + stats.danger3 == stats.total
        assert 0.0 <= stats.riskPercent <= 100.0

    overall = compute_overall_stats(students)
    assert sum(overall.dangerCounts.values()) == overall.total


def test_unresolved_grade_excluded_from_groups(grades, students):
    """Student 7 points at a missing grade: flat lists keep it, groups do not."""
    stats = compute_all_parallel_stats(grades, students)
    grouped_ids = {s.id for p in stats.values() for s in p.students}
    assert 7 not in grouped_ids

    comparison = compute_grade_comparison(students, grades)
    assert sum(entry.total for entry in comparison) == 6

    assert 7 in [s.id for s in filter_students(students, grades, AnalyticsFilters())]


def test_parallel_stats_empty_parallel():
    """An empty group reports zeros instead of dividing by zero."""
    grades = [Grade(id=1, grade="5 A", parallel="5")]
    stats = compute_parallel_stats("5", grades, [])

    assert stats.total == 0
    assert stats.riskPercent == 0.0
    assert stats.avgScore == 0.0


def test_rank_parallels_by_risk(grades, students):
    """Ties keep parallel order; badge tiers depend on rank and percentage."""
    ranking = rank_parallels_by_risk(compute_all_parallel_stats(grades, students))

    assert [r.parallel for r in ranking] == ["9", "11", "10"]
    assert [r.rank for r in ranking] == [1, 2, 3]
    assert [r.tier for r in ranking] == ["red", "orange", "yellow"]


def test_rank_tiers_fall_back_to_green():
    stats = {
        "5": ParallelStats(total=10, atRisk=2, riskPercent=20.0),
        "6": ParallelStats(total=10, atRisk=1, riskPercent=15.0),
        "7": ParallelStats(total=10, atRisk=1, riskPercent=10.0),
        "8": ParallelStats(total=10, atRisk=5, riskPercent=50.0),
    }
    ranking = rank_parallels_by_risk(stats)

    assert [r.parallel for r in ranking] == ["8", "5", "6", "7"]
    # rank 2 at exactly 20% is orange; rank 3 at exactly 15% is yellow
    assert [r.tier for r in ranking] == ["red", "orange", "yellow", "green"]
    assert rank_parallels_by_risk({}) == []


def test_grade_comparison(grades, students):
    comparison = compute_grade_comparison(students, grades)

    assert [entry.grade for entry in comparison] == ["10 A", "10 B", "11 A", "9 A"]
    first = comparison[0]
    assert first.total == 3
    assert first.atRisk == 1
    assert first.scoreCount == 2
    assert first.avgScore == pytest.approx(66.25)
    assert comparison[3].avgScore == 0.0


def test_overall_stats(students):
    overall = compute_overall_stats(students)

    assert overall.total == 7
    assert overall.dangerCounts == {0: 2, 1: 1, 2: 2, 3: 2}
    assert overall.atRisk == 4
    assert overall.avgPercentage == pytest.approx(309.5 / 6)
    assert overall.improving == 3
    # a delta of exactly zero counts as neither
    assert overall.declining == 2


def test_overall_stats_empty():
    overall = compute_overall_stats([])

    assert overall.total == 0
    assert overall.avgPercentage == 0.0
    assert overall.dangerCounts == {0: 0, 1: 0, 2: 0, 3: 0}


def test_filter_students_combined(grades, students):
    filters = AnalyticsFilters(parallel="10", danger_level=2, search="an")
    result = filter_students(students, grades, filters)
    assert [s.id for s in result] == [2]


def test_filter_order_independence(grades, students):
    """Applying the filters one at a time in any order gives the same set."""
    single_filters = [
        AnalyticsFilters(parallel="10"),
        AnalyticsFilters(danger_level=2),
        AnalyticsFilters(search="an"),
    ]
    expected = filter_students(
        students, grades, AnalyticsFilters(parallel="10", danger_level=2, search="an")
    )

    for order in permutations(single_filters):
        result = students
        for f in order:
            result = filter_students(result, grades, f)
        assert result == expected


def test_filter_students_search(grades, students):
    """Search is case-insensitive over name and email."""
    by_email = filter_students(students, grades, AnalyticsFilters(search="MADINA@"))
    assert [s.id for s in by_email] == [4]

    by_name = filter_students(students, grades, AnalyticsFilters(search="sokolov"))
    assert [s.id for s in by_name] == [3]


def test_filter_students_grade_and_unknown_danger(grades, students):
    by_grade = filter_students(students, grades, AnalyticsFilters(grade_id=1))
    assert [s.id for s in by_grade] == [1, 2, 3]

    # unknown danger level counts as low
    low = filter_students(students, grades, AnalyticsFilters(danger_level=0))
    assert [s.id for s in low] == [1, 3]


def test_filters_do_not_mutate_inputs(grades, students):
    before = [s.model_copy(deep=True) for s in students]
    filter_students(students, grades, AnalyticsFilters(parallel="10", search="a"))
    compute_all_parallel_stats(grades, students)
    assert students == before


def test_drill_downs(grades, students):
    assert [s.id for s in students_by_danger_level(students, 3)] == [5, 7]
    assert [s.id for s in at_risk_students(students)] == [2, 5, 6, 7]

    stats = compute_all_parallel_stats(grades, students)
    assert [s.id for s in parallel_students(stats, "10", risk_level=0)] == [1, 3]
    assert [s.id for s in parallel_students(stats, "10", at_risk_only=True)] == [2]
    assert parallel_students(stats, "12") is None

    assert [s.id for s in grade_students(students, grades, "10 B")] == [4]
    assert grade_students(students, grades, "7 Z") is None


def test_malformed_records_degrade():
    """Missing optional fields never raise."""
    grades = [Grade(id=1, grade="")]
    students = [Student(id=1, name="", grade_id=None)]
    data = AnalyticsData(students=students, grades=grades)

    snapshot = build_snapshot(data, AnalyticsFilters(search="x"))

    assert snapshot.parallels == []
    assert snapshot.students == []
    assert snapshot.overall.total == 0


def test_snapshot_contents(grades, students):
    data = AnalyticsData(students=students, grades=grades)
    snapshot = build_snapshot(data, AnalyticsFilters(parallel="10"))

    assert [g.id for g in snapshot.grades] == [1, 2]
    assert [s.id for s in snapshot.students] == [1, 2, 3, 4]
    assert snapshot.overall.total == 4
    # parallel stats always cover every student
    assert snapshot.parallelStats["11"].total == 1
    assert [r.parallel for r in snapshot.ranking] == ["9", "11", "10"]
    assert set(snapshot.charts) == {
        "dangerDistribution", "gradeComparison", "parallelComparison",
        "riskPercentage", "quarterPerformance",
    }


def test_snapshot_idempotent(grades, students):
    """Two runs over the same inputs serialize identically."""
    data = AnalyticsData(students=students, grades=grades)
    filters = AnalyticsFilters(danger_level=2)

    first = build_snapshot(data, filters).model_dump_json()
    second = build_snapshot(data, filters).model_dump_json()

    assert first == second


def test_aggregator_memoizes_last_pair(grades, students):
    aggregator = Aggregator()
    data = AnalyticsData(students=students, grades=grades)

    first = aggregator.snapshot(data, AnalyticsFilters())
    again = aggregator.snapshot(AnalyticsData(students=students, grades=grades), AnalyticsFilters())
    assert again is first

    filtered = aggregator.snapshot(data, AnalyticsFilters(parallel="11"))
    assert filtered is not first
    assert [s.id for s in filtered.students] == [5]

    # only the last pair is remembered
    back = aggregator.snapshot(data, AnalyticsFilters())
    assert back is not first
    assert back.model_dump_json() == first.model_dump_json()


def test_grade_breakdown_lists_every_grade(grades, students):
    """Empty grades are listed too, each histogram sums to its total."""
    breakdown = compute_grade_breakdown(grades + [Grade(id=5, grade="11 B")], students)

    assert [e.grade_id for e in breakdown] == [1, 2, 3, 4, 5]
    for entry in breakdown:
        assert entry.danger0 + entry.danger1 + entry.danger2 + entry.danger3 == entry.total

    first = breakdown[0]
    assert first.curator_name == "Ivanova"
    assert (first.danger0, first.danger1, first.danger2, first.danger3) == (2, 0, 1, 0)
    assert breakdown[4].total == 0
    assert breakdown[4].avgScore == 0.0


def test_grade_comparison_carries_histogram(grades, students):
    comparison = compute_grade_comparison(students, grades)
    for entry in comparison:
        assert entry.danger0 + entry.danger1 + entry.danger2 + entry.danger3 == entry.total
    assert comparison[2].danger3 == 1


def test_snapshot_grade_breakdown_follows_filters(grades, students):
    data = AnalyticsData(students=students, grades=grades + [Grade(id=5, grade="10 C", parallel="10")])
    snapshot = build_snapshot(data, AnalyticsFilters(parallel="10", danger_level=2))

    assert [e.grade for e in snapshot.gradeBreakdown] == ["10 A", "10 B", "10 C"]
    assert [e.total for e in snapshot.gradeBreakdown] == [1, 0, 0]
    assert snapshot.gradeBreakdown[0].danger2 == 1


def test_student_rows_display_values(grades, students):
    """Unknown values render as a dash, known ones are formatted."""
    rows = student_rows([students[0], students[2], students[6]], grades)

    anna, ivan, lost = rows
    assert anna.gradeName == "10 A"
    assert anna.averageDisplay == "75%"
    assert anna.deltaDisplay == "+5%"
    assert anna.dangerLabel == "Low"
    assert ivan.averageDisplay == "—"
    assert ivan.deltaDisplay == "0%"
    assert ivan.dangerLabel == "—"
    assert lost.gradeName == "-"
    assert lost.dangerLabel == "Critical"
    assert lost.id == 7
