from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import AsyncIterator, Dict, List

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from apps.evaluator import csv_io
from apps.evaluator.service import EvaluatorService, LoadReport
from smarteval.core.errors import PermissionDenied, RemoteStoreError
from smarteval.core.validation import ValidationFailure
from smarteval.runtime import bootstrap_evaluator

REPO_ROOT = Path(__file__).resolve().parents[2]


class PortalSettings(BaseModel):
    """Runtime configuration for the portal backend."""

    repo_root: Path = Field(default=REPO_ROOT)
    config_path: Path | None = None
    store_path: Path | None = None


@lru_cache
def get_settings() -> PortalSettings:
    config_path = os.getenv("PORTAL_CONFIG") or os.getenv("SMART_EVAL_CONFIG")
    store_path = os.getenv("PORTAL_STORE_PATH")
    return PortalSettings(
        config_path=Path(config_path).expanduser().resolve() if config_path else None,
        store_path=Path(store_path).expanduser().resolve() if store_path else None,
    )


@dataclass
class LoadedService:
    service: EvaluatorService
    report: LoadReport
    backend: str


async def get_loaded_service(settings: PortalSettings = Depends(get_settings)) -> AsyncIterator[LoadedService]:
    ctx = bootstrap_evaluator(settings.config_path, repo_root=settings.repo_root, store_path=settings.store_path)
    try:
        report = await ctx.service.load_initial_data()
        yield LoadedService(service=ctx.service, report=report, backend=ctx.config.store.backend)
    finally:
        await ctx.aclose()


class HealthResponse(BaseModel):
    status: str
    backend: str
    loaded: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)


class DashboardResponse(BaseModel):
    total_groups: int
    total_students: int
    total_tasks: int
    total_evaluations: int
    evaluated_tasks: int
    pending_tasks: int
    students_without_role: int
    gender_distribution: Dict[str, int]
    academic_group_distribution: Dict[str, int]
    option_counts: Dict[str, int]
    top_group: str | None = None
    top_group_average: float | None = None


class StudentRankingItem(BaseModel):
    rank: int
    student_id: str
    name: str
    roll: str
    group_id: str | None = None
    total: float
    evaluations: int
    average: float


class GroupRankingItem(BaseModel):
    rank: int
    group_id: str
    name: str
    average: float
    members: int
    scored_members: int


class TaskAverageItem(BaseModel):
    task_id: str
    name: str
    date: str
    max_score: int
    average: float


class TaskPerformanceItem(BaseModel):
    task_id: str
    name: str
    average: float
    submissions: int
    completion_rate: int


class GroupStatisticsResponse(BaseModel):
    group_id: str
    name: str
    members: int
    evaluations: int
    average: float
    best_member_average: float
    task_performance: List[TaskPerformanceItem] = Field(default_factory=list)


app = FastAPI(title="Smart Evaluator Portal API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationFailure)
async def _validation_failure(_: Request, exc: ValidationFailure) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.violations})


@app.exception_handler(RemoteStoreError)
async def _remote_store_error(_: Request, exc: RemoteStoreError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": exc.user_message})


@app.exception_handler(PermissionDenied)
async def _permission_denied(_: Request, exc: PermissionDenied) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.get("/health", response_model=HealthResponse)
def health(loaded: LoadedService = Depends(get_loaded_service)) -> HealthResponse:
    status = "ok" if loaded.report.ok else "degraded"
    return HealthResponse(status=status, backend=loaded.backend, loaded=loaded.report.loaded, failed=loaded.report.failed)


@app.get("/dashboard", response_model=DashboardResponse)
def dashboard(loaded: LoadedService = Depends(get_loaded_service)) -> DashboardResponse:
    summary = loaded.service.dashboard()
    top = summary.top_group
    return DashboardResponse(
        total_groups=summary.total_groups,
        total_students=summary.total_students,
        total_tasks=summary.total_tasks,
        total_evaluations=summary.total_evaluations,
        evaluated_tasks=summary.evaluated_tasks,
        pending_tasks=summary.pending_tasks,
        students_without_role=summary.students_without_role,
        gender_distribution=summary.gender_distribution,
        academic_group_distribution=summary.academic_group_distribution,
        option_counts=summary.option_stats.as_dict(),
        top_group=top.group.name if top else None,
        top_group_average=round(top.average, 2) if top else None,
    )


@app.get("/rankings/students", response_model=List[StudentRankingItem])
def student_rankings(
    limit: int = Query(100, ge=1, le=1000, description="Maximum students to return"),
    loaded: LoadedService = Depends(get_loaded_service),
) -> List[StudentRankingItem]:
    return [
        StudentRankingItem(
            rank=standing.rank,
            student_id=standing.student.id,
            name=standing.student.name,
            roll=standing.student.roll,
            group_id=standing.student.group_id,
            total=standing.total,
            evaluations=standing.count,
            average=round(standing.average, 2),
        )
        for standing in loaded.service.student_rankings()[:limit]
    ]


@app.get("/rankings/groups", response_model=List[GroupRankingItem])
def group_rankings(loaded: LoadedService = Depends(get_loaded_service)) -> List[GroupRankingItem]:
    return [
        GroupRankingItem(
            rank=standing.rank,
            group_id=standing.group.id,
            name=standing.group.name,
            average=round(standing.average, 2),
            members=standing.member_count,
            scored_members=standing.scored_member_count,
        )
        for standing in loaded.service.group_rankings()
    ]


@app.get("/tasks/averages", response_model=List[TaskAverageItem])
def task_averages(loaded: LoadedService = Depends(get_loaded_service)) -> List[TaskAverageItem]:
    return [
        TaskAverageItem(task_id=task.id, name=task.name, date=task.date, max_score=task.max_score, average=round(avg, 2))
        for task, avg in loaded.service.task_averages()
    ]


@app.get("/groups/{group_id}/statistics", response_model=GroupStatisticsResponse)
def group_statistics(group_id: str, loaded: LoadedService = Depends(get_loaded_service)) -> GroupStatisticsResponse:
    group = next((g for g in loaded.service.state.groups if g.id == group_id), None)
    if group is None:
        raise HTTPException(status_code=404, detail=f"Group {group_id} not found")
    stats = loaded.service.group_statistics(group_id)
    return GroupStatisticsResponse(
        group_id=group.id,
        name=group.name,
        members=stats.member_count,
        evaluations=stats.evaluation_count,
        average=round(stats.average, 2),
        best_member_average=round(stats.best_member_average, 2),
        task_performance=[
            TaskPerformanceItem(
                task_id=item.task.id,
                name=item.task.name,
                average=round(item.average, 2),
                submissions=item.submissions,
                completion_rate=item.completion_rate,
            )
            for item in stats.task_performance
        ],
    )


@app.get("/export/{kind}.csv", response_class=PlainTextResponse)
def export_csv(kind: str, loaded: LoadedService = Depends(get_loaded_service)) -> PlainTextResponse:
    state = loaded.service.state
    if kind == "students":
        body = csv_io.export_students_csv(state.students, state.groups)
    elif kind == "groups":
        body = csv_io.export_groups_csv(state.groups, state.students)
    elif kind == "evaluations":
        body = csv_io.export_evaluations_csv(state.evaluations, state.tasks, state.groups, state.students)
    else:
        raise HTTPException(status_code=404, detail=f"Unknown export '{kind}'")
    return PlainTextResponse(
        body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{kind}.csv"'},
    )
