"""REST data access for the analytics view."""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import TypeAdapter, ValidationError

from app import config
from app.models import (
    AnalyticsData,
    ClassDataResponse,
    Grade,
    GradePayload,
    LoadFailed,
    LoadOk,
    LoadResult,
    LoadStale,
    Student,
)
from app.parsers import normalize_filter_value

logger = logging.getLogger(__name__)

GRADES_PATH = '/grades/all'
CLASS_DATA_PATH = '/grades/class-data'
SUBJECTS_PATH = '/subjects'
PARALLELS_PATH = '/grades/parallels'

_grades_adapter = TypeAdapter(List[GradePayload])
_labels_adapter = TypeAdapter(List[Any])


def _labels(values: List[Any]) -> List[str]:
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


class AnalyticsApiClient:
    """
    Thin async client over the backend endpoints.

    Payloads are validated on arrival; malformed numeric fields are already
    reduced to None when a method returns.
    """

    def __init__(
        self,
        base_url: str = config.API_BASE_URL,
        token: str = config.API_TOKEN,
        timeout: float = config.API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {'Accept': 'application/json'}
        if token:
            headers['Authorization'] = f'Bearer {token}'
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def get_all_grades(self) -> List[GradePayload]:
        return _grades_adapter.validate_python(await self._get(GRADES_PATH))

    async def get_all_class_data(self, subject: Optional[str] = None) -> ClassDataResponse:
        subject = normalize_filter_value(subject)
        params = {'subject': subject} if subject else None
        return ClassDataResponse.model_validate(await self._get(CLASS_DATA_PATH, params))

    async def get_subjects(self) -> List[str]:
        return _labels(_labels_adapter.validate_python(await self._get(SUBJECTS_PATH)))

    async def get_parallels(self) -> List[str]:
        return _labels(_labels_adapter.validate_python(await self._get(PARALLELS_PATH)))

    async def aclose(self):
        await self._client.aclose()


def to_grades(payloads: Sequence[GradePayload]) -> List[Grade]:
    return [Grade(**payload.model_dump()) for payload in payloads]


def flatten_class_data(class_data: ClassDataResponse, grades: Sequence[Grade]) -> List[Student]:
    """
    Flatten nested class data into one Student per student id.

    The grade is resolved by matching the item's grade label; students of an
    unknown grade keep ``grade_id=None``. The first occurrence of an id wins.
    """
    grade_ids = {}
    for grade in grades:
        grade_ids.setdefault(grade.grade, grade.id)

    students: List[Student] = []
    seen = set()
    unresolved = 0
    for item in class_data.class_data:
        grade_id = grade_ids.get(item.grade_liter) if item.grade_liter else None
        for row in item.students:
            if row.id in seen:
                continue
            seen.add(row.id)
            if grade_id is None:
                unresolved += 1
            students.append(Student(
                id=row.id,
                name=row.student_name,
                email=row.email,
                grade_id=grade_id,
                actual_scores=row.actual_scores if row.actual_scores is not None else row.actual_score,
                predicted_scores=row.predicted_scores,
                avg_percentage=row.avg_percentage,
                danger_level=row.danger_level,
                delta_percentage=row.delta_percentage,
                last_subject=item.subject_name,
            ))

    if unresolved:
        logger.debug("%d students reference an unknown grade", unresolved)
    return students


class AnalyticsLoader:
    """
    Fetches the source collections concurrently and keeps the latest ones.

    Every call to ``load`` supersedes the previous ones: a result that
    arrives after a newer request was started is discarded.
    """

    def __init__(self, client: AnalyticsApiClient):
        self.client = client
        self.data = AnalyticsData()
        self.subject: Optional[str] = None
        self.loaded = False
        self._generation = 0

    async def load(self, subject: Optional[str] = None) -> LoadResult:
        subject = normalize_filter_value(subject)
        self._generation += 1
        generation = self._generation

        try:
            grade_payloads, subjects, parallels, class_data = await asyncio.gather(
                self.client.get_all_grades(),
                self.client.get_subjects(),
                self.client.get_parallels(),
                self.client.get_all_class_data(subject),
            )
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            if generation != self._generation:
                logger.info("Discarding failed load %d superseded by %d", generation, self._generation)
                return LoadStale(generation=generation)
            logger.warning("Failed to load analytics data: %s", e)
            return LoadFailed(message=f"Error loading data: {e}", data=self.data)

        if generation != self._generation:
            logger.info("Discarding load %d superseded by %d", generation, self._generation)
            return LoadStale(generation=generation)

        grades = to_grades(grade_payloads)
        data = AnalyticsData(
            students=flatten_class_data(class_data, grades),
            grades=grades,
            subjects=subjects,
            parallels=parallels,
        )
        self.data = data
        self.subject = subject
        self.loaded = True
        logger.info(
            "Loaded %d students in %d grades (subject=%s)",
            len(data.students), len(data.grades), subject or 'all'
        )
        return LoadOk(data=data)

    async def ensure_loaded(self, subject: Optional[str] = None) -> LoadResult:
        """Reuse the current data when it was loaded for the same subject."""
        subject = normalize_filter_value(subject)
        if self.loaded and self.subject == subject:
            return LoadOk(data=self.data)
        return await self.load(subject)
