"""FastAPI main application for School Analytics."""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import config
from app.aggregator import (
    Aggregator,
    at_risk_students,
    grade_students,
    parallel_students,
    student_rows,
    students_by_danger_level,
)
from app.client import AnalyticsApiClient, AnalyticsLoader
from app.export import export_filename, students_to_csv
from app.models import (
    AnalyticsFilters,
    AnalyticsSnapshot,
    Grade,
    LoadFailed,
    LoadOk,
    RefreshResponse,
    Student,
    StudentListResponse,
)
from app.parsers import DANGER_LEVELS, normalize_filter_value
from app.risk import DANGER_LABELS

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

_loader: Optional[AnalyticsLoader] = None
aggregator = Aggregator()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Starting School Analytics")
    yield
    if _loader is not None:
        await _loader.client.aclose()
    logger.info("Shutdown complete")


app = FastAPI(title="School Analytics", version="1.0.0", lifespan=lifespan)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s", request.url.path)
    error_detail = str(exc)
    if config.DEBUG:
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


def get_loader() -> AnalyticsLoader:
    global _loader
    if _loader is None:
        _loader = AnalyticsLoader(AnalyticsApiClient())
    return _loader


def get_aggregator() -> Aggregator:
    return aggregator


def parse_filters(
    parallel: Optional[str] = Query(None),
    grade: Optional[str] = Query(None),
    danger_level: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
) -> AnalyticsFilters:
    """Read the analytics filters; "all" or an empty value disables one."""
    grade = normalize_filter_value(grade)
    danger_level = normalize_filter_value(danger_level)

    grade_id = None
    if grade is not None:
        try:
            grade_id = int(grade)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid grade id: {grade}")

    level = None
    if danger_level is not None:
        try:
            level = int(danger_level)
        except ValueError:
            level = None
        if level not in DANGER_LEVELS:
            raise HTTPException(status_code=400, detail=f"Invalid danger level: {danger_level}")

    return AnalyticsFilters(
        parallel=normalize_filter_value(parallel),
        grade_id=grade_id,
        danger_level=level,
        search=(search or '').strip() or None,
    )


async def current_snapshot(
    filters: AnalyticsFilters = Depends(parse_filters),
    subject: Optional[str] = Query(None),
    loader: AnalyticsLoader = Depends(get_loader),
    aggregator: Aggregator = Depends(get_aggregator),
) -> AnalyticsSnapshot:
    """Snapshot over the latest data; a failed fetch falls back to the previous data."""
    result = await loader.ensure_loaded(subject)
    if isinstance(result, LoadFailed):
        logger.warning("Serving analytics from previous data: %s", result.message)
    return aggregator.snapshot(loader.data, filters)


def _student_list(title: str, students: List[Student], grades: List[Grade]) -> StudentListResponse:
    return StudentListResponse(title=title, count=len(students), students=student_rows(students, grades))


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.post("/refresh", response_model=RefreshResponse)
async def refresh(
    subject: Optional[str] = Query(None),
    loader: AnalyticsLoader = Depends(get_loader),
):
    """Reload grades, subjects, parallels and class data."""
    result = await loader.load(subject)
    if isinstance(result, LoadFailed):
        raise HTTPException(status_code=502, detail=result.message)
    if isinstance(result, LoadOk):
        message = f"Loaded {len(result.data.students)} students"
    else:
        message = "Superseded by a newer request"
    return RefreshResponse(
        status=result.status,
        message=message,
        students=len(loader.data.students),
        grades=len(loader.data.grades),
    )


@app.get("/analytics", response_model=AnalyticsSnapshot)
async def get_analytics(snapshot: AnalyticsSnapshot = Depends(current_snapshot)):
    """Statistics and chart series for the current filters."""
    return snapshot


# risk_level narrows a drill-down; danger_level is the snapshot filter
@app.get("/analytics/students", response_model=StudentListResponse)
async def get_filtered_students(
    risk_level: Optional[int] = Query(None, ge=0, le=3),
    at_risk: bool = Query(False),
    snapshot: AnalyticsSnapshot = Depends(current_snapshot),
    loader: AnalyticsLoader = Depends(get_loader),
):
    """Students behind a danger level card or the at-risk card."""
    students = snapshot.students
    title = "Students"
    if at_risk:
        students = at_risk_students(students)
        title = "Students at risk"
    elif risk_level is not None:
        students = students_by_danger_level(students, risk_level)
        title = f"Students with {DANGER_LABELS[risk_level].lower()} risk"
    return _student_list(title, students, loader.data.grades)


@app.get("/analytics/parallels/{parallel_id}/students", response_model=StudentListResponse)
async def get_parallel_students(
    parallel_id: str,
    risk_level: Optional[int] = Query(None, ge=0, le=3),
    at_risk: bool = Query(False),
    snapshot: AnalyticsSnapshot = Depends(current_snapshot),
    loader: AnalyticsLoader = Depends(get_loader),
):
    """Students of one parallel, optionally narrowed to a danger level."""
    students = parallel_students(snapshot.parallelStats, parallel_id, risk_level, at_risk)
    if students is None:
        raise HTTPException(status_code=404, detail=f"Unknown parallel: {parallel_id}")

    title = f"Students of grade {parallel_id}"
    if at_risk:
        title += " at risk"
    elif risk_level is not None:
        title += f" with {DANGER_LABELS[risk_level].lower()} risk"
    return _student_list(title, students, loader.data.grades)


@app.get("/analytics/grades/{grade_label}/students", response_model=StudentListResponse)
async def get_grade_students(
    grade_label: str,
    snapshot: AnalyticsSnapshot = Depends(current_snapshot),
    loader: AnalyticsLoader = Depends(get_loader),
):
    """Filtered students of one grade, looked up by label."""
    students = grade_students(snapshot.students, loader.data.grades, grade_label)
    if students is None:
        raise HTTPException(status_code=404, detail=f"Unknown grade: {grade_label}")
    return _student_list(f"Students of {grade_label}", students, loader.data.grades)


@app.get("/download.csv")
async def download_csv(
    snapshot: AnalyticsSnapshot = Depends(current_snapshot),
    loader: AnalyticsLoader = Depends(get_loader),
):
    """Download the filtered students as CSV."""
    content = students_to_csv(snapshot.students, loader.data.grades)

    return StreamingResponse(
        iter([content.encode('utf-8')]),
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f"attachment; filename={export_filename()}"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
