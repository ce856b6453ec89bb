"""Shared fixtures: a small school with two parallels."""

import pytest

from app.models import Grade, Student


@pytest.fixture
def grades():
    return [
        Grade(id=1, grade="10 A", parallel="10", curator_name="Ivanova", student_count=3, actual_student_count=3),
        Grade(id=2, grade="10 B", parallel="10", student_count=2, actual_student_count=2),
        Grade(id=3, grade="11 A", parallel="11", student_count=2, actual_student_count=1),
        Grade(id=4, grade="9 A", parallel=None, student_count=1, actual_student_count=1),
    ]


@pytest.fixture
def students():
    return [
        Student(id=1, name="Anna Petrova", email="anna@school.kz", grade_id=1,
                actual_scores=[80.0, 70.0, None, None], avg_percentage=75.0,
                danger_level=0, delta_percentage=5.0),
        Student(id=2, name="Daniyar Bek", email="dan@school.kz", grade_id=1,
                actual_scores=[60.0, 0.0, 55.0, None], avg_percentage=57.5,
                danger_level=2, delta_percentage=-3.0),
        Student(id=3, name="Ivan Sokolov", grade_id=1,
                actual_scores=None, avg_percentage=None,
                danger_level=None, delta_percentage=0.0),
        Student(id=4, name="Madina Nurlan", email="madina@school.kz", grade_id=2,
                actual_scores=[90.0, 95.0, 92.0, 91.0], avg_percentage=92.0,
                danger_level=1, delta_percentage=1.5),
        Student(id=5, name="Oleg Kim", email="oleg@school.kz", grade_id=3,
                actual_scores=[40.0, 35.0, -5.0, 30.0], avg_percentage=35.0,
                danger_level=3, delta_percentage=-10.0),
        Student(id=6, name="Aigerim Sadykova", email="AIGERIM@school.kz", grade_id=4,
                avg_percentage=0.0, danger_level=2),
        Student(id=7, name="Lost Student", email="lost@school.kz", grade_id=99,
                avg_percentage=50.0, danger_level=3, delta_percentage=2.0),
    ]
