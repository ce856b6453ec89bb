"""Data models for the School Analytics application."""

from typing import Optional, Dict, List, Literal, Union, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.parsers import clean_optional_number, clean_danger_level, clean_score_list


# --- Payloads returned by the REST backend ---------------------------------

class GradePayload(BaseModel):
    """Grade (class section) record as served by the backend."""
    id: int
    grade: str = ""
    parallel: Optional[str] = None
    curator_name: Optional[str] = None
    student_count: int = 0
    actual_student_count: int = 0

    @field_validator('grade', mode='before')
    @classmethod
    def _grade_label(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator('parallel', mode='before')
    @classmethod
    def _parallel_label(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator('student_count', 'actual_student_count', mode='before')
    @classmethod
    def _counts(cls, value: Any) -> int:
        number = clean_optional_number(value)
        return int(number) if number is not None else 0


class ClassStudentPayload(BaseModel):
    """Student row nested inside a class-data item."""
    model_config = ConfigDict(populate_by_name=True)

    id: int
    student_name: str = ""
    email: Optional[str] = None
    actual_scores: Optional[List[Optional[float]]] = None
    actual_score: Optional[List[Optional[float]]] = None
    predicted_scores: Optional[List[Optional[float]]] = None
    avg_percentage: Optional[float] = None
    danger_level: Optional[int] = None
    delta_percentage: Optional[float] = None

    @field_validator('student_name', mode='before')
    @classmethod
    def _name(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator('email', mode='before')
    @classmethod
    def _email(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator('actual_scores', 'actual_score', 'predicted_scores', mode='before')
    @classmethod
    def _scores(cls, value: Any) -> Optional[List[Optional[float]]]:
        return clean_score_list(value)

    @field_validator('avg_percentage', 'delta_percentage', mode='before')
    @classmethod
    def _numbers(cls, value: Any) -> Optional[float]:
        return clean_optional_number(value)

    @field_validator('danger_level', mode='before')
    @classmethod
    def _danger(cls, value: Any) -> Optional[int]:
        return clean_danger_level(value)


class ClassItem(BaseModel):
    """One grade/subject block of the class-data endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    grade_liter: Optional[str] = None
    subject_name: Optional[str] = None
    students: List[ClassStudentPayload] = Field(default_factory=list, alias='class')

    @field_validator('students', mode='before')
    @classmethod
    def _students(cls, value: Any) -> list:
        return value if isinstance(value, list) else []


class ClassDataResponse(BaseModel):
    """Response of the class-data endpoint."""
    class_data: List[ClassItem] = Field(default_factory=list)

    @field_validator('class_data', mode='before')
    @classmethod
    def _items(cls, value: Any) -> list:
        return value if isinstance(value, list) else []


# --- Domain records ---------------------------------------------------------

class Grade(BaseModel):
    """Grade section, e.g. "10 A", belonging to parallel "10"."""
    id: int
    grade: str
    parallel: Optional[str] = None
    curator_name: Optional[str] = None
    student_count: int = 0
    actual_student_count: int = 0


class Student(BaseModel):
    """Student annotated with derived average, delta and danger level."""
    id: int
    name: str
    email: Optional[str] = None
    grade_id: Optional[int] = None
    actual_scores: Optional[List[Optional[float]]] = None
    predicted_scores: Optional[List[Optional[float]]] = None
    avg_percentage: Optional[float] = None
    danger_level: Optional[int] = None
    delta_percentage: Optional[float] = None
    last_subject: Optional[str] = None


class AnalyticsData(BaseModel):
    """Authoritative source collections for one load."""
    students: List[Student] = Field(default_factory=list)
    grades: List[Grade] = Field(default_factory=list)
    subjects: List[str] = Field(default_factory=list)
    parallels: List[str] = Field(default_factory=list)


class AnalyticsFilters(BaseModel):
    """Optional filters of the analytics view; None or "all" disables one."""
    parallel: Optional[str] = None
    grade_id: Optional[int] = None
    danger_level: Optional[int] = None
    search: Optional[str] = None


# --- Load results -----------------------------------------------------------

class LoadOk(BaseModel):
    status: Literal['ok'] = 'ok'
    data: AnalyticsData


class LoadFailed(BaseModel):
    status: Literal['error'] = 'error'
    message: str
    data: AnalyticsData


class LoadStale(BaseModel):
    status: Literal['stale'] = 'stale'
    generation: int


LoadResult = Union[LoadOk, LoadFailed, LoadStale]


# --- Derived statistics -----------------------------------------------------

class ParallelStats(BaseModel):
    """Statistics of one parallel."""
    total: int = 0
    atRisk: int = 0
    riskPercent: float = 0.0
    danger0: int = 0
    danger1: int = 0
    danger2: int = 0
    danger3: int = 0
    avgScore: float = 0.0
    students: List[Student] = Field(default_factory=list)


class RankedParallel(BaseModel):
    """Parallel position in the risk ranking."""
    rank: int
    parallel: str
    riskPercent: float
    atRisk: int
    total: int
    tier: str


class GradeStats(BaseModel):
    """Per-grade totals for the grade comparison chart and detail table."""
    grade_id: int
    grade: str
    curator_name: Optional[str] = None
    total: int = 0
    atRisk: int = 0
    danger0: int = 0
    danger1: int = 0
    danger2: int = 0
    danger3: int = 0
    scoreSum: float = 0.0
    scoreCount: int = 0
    avgScore: float = 0.0


class QuarterStats(BaseModel):
    quarter: int
    total: float = 0.0
    count: int = 0
    average: float = 0.0


class OverallStats(BaseModel):
    """Headline numbers of the filtered student set."""
    total: int = 0
    dangerCounts: Dict[int, int] = Field(default_factory=lambda: {0: 0, 1: 0, 2: 0, 3: 0})
    avgPercentage: float = 0.0
    improving: int = 0
    declining: int = 0
    atRisk: int = 0


class ChartDataset(BaseModel):
    label: str
    data: List[float]
    backgroundColor: Union[str, List[str]]
    borderColor: Union[str, List[str], None] = None


class ChartSeries(BaseModel):
    """Label/value pairs ready for a bar, pie or line chart."""
    kind: Literal['bar', 'pie', 'line']
    labels: List[str]
    datasets: List[ChartDataset]


class AnalyticsSnapshot(BaseModel):
    """Everything the analytics view renders for one (data, filters) pair."""
    filters: AnalyticsFilters
    parallels: List[str]
    grades: List[Grade]
    students: List[Student]
    overall: OverallStats
    parallelStats: Dict[str, ParallelStats]
    ranking: List[RankedParallel]
    gradeComparison: List[GradeStats]
    gradeBreakdown: List[GradeStats]
    quarterPerformance: List[QuarterStats]
    charts: Dict[str, ChartSeries]


class RefreshResponse(BaseModel):
    status: str
    message: str
    students: int
    grades: int


class StudentRow(Student):
    """Student with the values a drill-down table displays."""
    gradeName: str = '-'
    averageDisplay: str
    deltaDisplay: str
    dangerLabel: str


class StudentListResponse(BaseModel):
    """Drill-down list behind a dashboard card or chart bar."""
    title: str
    count: int
    students: List[StudentRow]
