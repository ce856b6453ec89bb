"""CSV export of the filtered student list."""

import csv
from datetime import date
from io import StringIO
from typing import Optional, Sequence

from app.aggregator import grade_name
from app.models import Grade, Student

CSV_HEADER = ['Name', 'Email', 'Grade', 'Average %', 'Danger level', 'Delta %']


def _number_cell(value: Optional[float]) -> str:
    if value is None:
        return ''
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def export_filename(today: Optional[date] = None) -> str:
    """File name like ``analytics_2024-05-01.csv``."""
    today = today or date.today()
    return f"analytics_{today.isoformat()}.csv"


def students_to_csv(students: Sequence[Student], grades: Sequence[Grade]) -> str:
    """
    Flatten students to CSV text, one row per student.

    Missing values are written as empty cells; a student whose grade cannot
    be resolved gets "-" as grade label.
    """
    output = StringIO()
    writer = csv.writer(output, lineterminator='\n')

    writer.writerow(CSV_HEADER)
    for student in students:
        writer.writerow([
            student.name,
            student.email or '',
            grade_name(grades, student.grade_id),
            _number_cell(student.avg_percentage),
            '' if student.danger_level is None else str(student.danger_level),
            _number_cell(student.delta_percentage),
        ])

    return output.getvalue()
