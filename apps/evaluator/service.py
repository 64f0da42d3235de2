"""
Service facade used by the CLI and the portal backend.

`EvaluatorService` owns the in-memory collections, funnels every write through
the validation rules and repositories, and exposes the scoring views over the
loaded state. In-memory state only changes after the store call succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from persistence.cache import ExpiringCache
from persistence.documents import WriteBatch
from smarteval.core.errors import PermissionDenied, RemoteStoreError
from smarteval.core.validation import ValidationFailure, ValidationResult

from . import rules, scoring
from .access import AccessDecision, Page, PageVisibility, check_page_access
from .csv_io import ImportReport, parse_student_rows, write_export_bundle
from .models import (
    Admin,
    AdminPermissions,
    AdminType,
    Evaluation,
    Group,
    Role,
    Student,
    StudentScore,
    Task,
    utc_now_iso,
)
from .repositories import Repositories

LOGGER = logging.getLogger("smarteval.service")

COLLECTIONS: Tuple[str, ...] = ("groups", "students", "tasks", "evaluations")
PAGE_VISIBILITY_DOC = "pageVisibility"


@dataclass
class EvaluatorState:
    groups: List[Group] = field(default_factory=list)
    students: List[Student] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    evaluations: List[Evaluation] = field(default_factory=list)
    admins: List[Admin] = field(default_factory=list)
    page_visibility: PageVisibility = field(default_factory=PageVisibility)


@dataclass
class LoadReport:
    loaded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class EvaluationDraft:
    """What the evaluation form edits: the existing record for the pair, if any."""

    task: Task
    group: Group
    members: List[Student]
    scores: Dict[str, StudentScore]
    evaluation: Optional[Evaluation] = None

    @property
    def is_existing(self) -> bool:
        return self.evaluation is not None


class EvaluatorService:
    def __init__(self, repositories: Repositories, cache: ExpiringCache | None = None) -> None:
        self.repos = repositories
        self.cache = cache or repositories.cache
        self.state = EvaluatorState()

    # ------------------------------------------------------------------
    # Loading

    async def load_initial_data(self, *, include_admins: bool = False, bypass_cache: bool = False) -> LoadReport:
        """Load every collection concurrently; one failing collection never aborts the others."""
        names = list(COLLECTIONS) + (["admins"] if include_admins else [])
        results = await asyncio.gather(
            *(getattr(self.repos, name).load_all(bypass_cache=bypass_cache) for name in names),
            return_exceptions=True,
        )
        report = LoadReport()
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                message = result.user_message if isinstance(result, RemoteStoreError) else str(result)
                LOGGER.error("Failed to load collection", extra={"collection": name, "error": message})
                report.failed[name] = message
                continue
            if isinstance(result, BaseException):
                raise result
            setattr(self.state, name, result)
            report.loaded.append(name)
        return report

    async def refresh(self, *, include_admins: bool = False) -> LoadReport:
        """Reload from the store, ignoring cached entries without deleting them."""
        with self.cache.force_refresh():
            return await self.load_initial_data(include_admins=include_admins)

    async def _reload(self, *names: str) -> None:
        """Re-read collections after a write; a failed read is logged and leaves the previous state."""
        for name in names:
            try:
                setattr(self.state, name, await getattr(self.repos, name).load_all())
            except RemoteStoreError as exc:
                LOGGER.warning("Reload after write failed", extra={"collection": name, "error": exc.user_message})

    # ------------------------------------------------------------------
    # Groups

    async def add_group(self, name: str) -> Group:
        result = rules.validate_group_name(name)
        result.raise_if_invalid("group")
        group = await self.repos.groups.insert(Group(name=result.data, created_at=utc_now_iso()))
        await self._reload("groups")
        return group

    async def rename_group(self, group_id: str, name: str) -> None:
        result = rules.validate_group_name(name)
        result.raise_if_invalid("group")
        await self.repos.groups.update(group_id, {"name": result.data})
        await self._reload("groups")

    async def delete_group(self, group_id: str) -> int:
        """Delete the group and all of its students in one batch. Returns the member count removed."""
        members = await self.repos.students.in_group(group_id)
        batch = WriteBatch()
        for student in members:
            batch.delete("students", student.id)
        batch.delete("groups", group_id)
        await self.repos.commit(batch, action="Deleting group", invalidate=("groups", "students"))
        LOGGER.info("Deleted group", extra={"group_id": group_id, "students_removed": len(members)})
        await self._reload("groups", "students")
        return len(members)

    # ------------------------------------------------------------------
    # Students

    def _known_group(self, group_id: Optional[str], groups: Sequence[Group]) -> ValidationResult:
        if group_id and not any(g.id == group_id for g in groups):
            return ValidationResult.from_errors([f"unknown group {group_id!r}"])
        return ValidationResult()

    async def add_student(self, student: Student) -> Student:
        existing = await self.repos.students.load_all()
        groups = await self.repos.groups.load_all()
        result = rules.check_student(student, existing).merge(self._known_group(student.group_id, groups))
        result.raise_if_invalid("student")
        created = await self.repos.students.insert(student.model_copy(update={"created_at": utc_now_iso()}))
        await self._reload("students")
        return created

    async def update_student(self, student_id: str, changes: Mapping[str, Any]) -> Student:
        """Apply snake_case ``changes`` to a student after re-validating the merged record."""
        existing = await self.repos.students.load_all()
        current = next((s for s in existing if s.id == student_id), None)
        if current is None:
            raise ValidationFailure([f"student {student_id!r} does not exist"], subject="student")
        changes = {key: value for key, value in changes.items() if key in Student.model_fields and key != "id"}
        merged = Student.model_validate({**current.model_dump(), **changes})
        groups = await self.repos.groups.load_all()
        result = rules.check_student(merged, existing, exclude_id=student_id)
        if "group_id" in changes:
            result = result.merge(self._known_group(merged.group_id, groups))
        result.raise_if_invalid("student")
        await self.repos.students.update(student_id, {key: getattr(merged, key) for key in changes})
        await self._reload("students")
        return merged

    async def assign_role(self, student_id: str, role: Role | str | None) -> Student:
        return await self.update_student(student_id, {"role": Role.parse(role)})

    async def delete_student(self, student_id: str) -> None:
        await self.repos.students.delete(student_id)
        await self._reload("students")

    # ------------------------------------------------------------------
    # Tasks

    async def add_task(self, name: str, description: str, max_score: Any, date: str) -> Task:
        rules.validate_task_fields(name, description, max_score, date).raise_if_invalid("task")
        task = Task(
            name=name.strip(),
            description=description.strip(),
            max_score=int(float(max_score)),
            date=date.strip(),
            created_at=utc_now_iso(),
        )
        created = await self.repos.tasks.insert(task)
        await self._reload("tasks")
        return created

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Task:
        current = next((t for t in await self.repos.tasks.load_all() if t.id == task_id), None)
        if current is None:
            raise ValidationFailure([f"task {task_id!r} does not exist"], subject="task")
        changes = {key: value for key, value in changes.items() if key in Task.model_fields and key != "id"}
        values = {**current.model_dump(), **changes}
        rules.validate_task_fields(
            values["name"], values["description"], values["max_score"], values["date"]
        ).raise_if_invalid("task")
        merged = Task.model_validate({**values, "max_score": int(float(values["max_score"]))})
        await self.repos.tasks.update(task_id, {key: getattr(merged, key) for key in changes})
        await self._reload("tasks")
        return merged

    async def delete_task(self, task_id: str) -> None:
        await self.repos.tasks.delete(task_id)
        await self._reload("tasks")

    # ------------------------------------------------------------------
    # Evaluations

    async def _task_and_group(self, task_id: str, group_id: str) -> Tuple[Task, Group]:
        task = next((t for t in await self.repos.tasks.load_all() if t.id == task_id), None)
        group = next((g for g in await self.repos.groups.load_all() if g.id == group_id), None)
        missing = []
        if task is None:
            missing.append(f"task {task_id!r} does not exist")
        if group is None:
            missing.append(f"group {group_id!r} does not exist")
        if missing:
            raise ValidationFailure(missing, subject="evaluation")
        return task, group

    async def start_evaluation(self, task_id: str, group_id: str) -> EvaluationDraft:
        """Open the single evaluation for (task, group), or an empty draft if none exists yet."""
        task, group = await self._task_and_group(task_id, group_id)
        existing = await self.repos.evaluations.find_for(task_id, group_id)
        members = await self.repos.students.in_group(group_id)
        scores: Dict[str, StudentScore] = dict(existing.scores) if existing else {}
        for member in members:
            scores.setdefault(member.id, StudentScore())
        return EvaluationDraft(task=task, group=group, members=members, scores=scores, evaluation=existing)

    async def save_evaluation(
        self,
        task_id: str,
        group_id: str,
        scores: Mapping[str, StudentScore | Mapping[str, Any]],
        evaluation_id: str | None = None,
    ) -> Evaluation:
        """Create or update the evaluation for (task, group); a pair never gets a second record."""
        task, _ = await self._task_and_group(task_id, group_id)
        normalized = {
            student_id: score if isinstance(score, StudentScore) else StudentScore.model_validate(score)
            for student_id, score in scores.items()
        }
        result = rules.validate_evaluation_scores(task, normalized)
        result.raise_if_invalid("evaluation")
        for warning in result.warnings:
            LOGGER.warning("Evaluation warning", extra={"task_id": task_id, "detail": warning})

        now = utc_now_iso()
        existing = await self.repos.evaluations.find_for(task_id, group_id)
        if evaluation_id and (existing is None or existing.id != evaluation_id):
            other = await self.repos.evaluations.get(evaluation_id)
            if other is not None:
                raise ValidationFailure(
                    [f"evaluation {evaluation_id!r} belongs to another task or group"], subject="evaluation"
                )
        if existing is not None:
            await self.repos.evaluations.update(existing.id, {"scores": normalized, "updated_at": now})
            saved = existing.model_copy(update={"scores": normalized, "updated_at": now})
        else:
            saved = await self.repos.evaluations.insert(
                Evaluation(task_id=task_id, group_id=group_id, scores=normalized, created_at=now, updated_at=now)
            )
        await self._reload("evaluations")
        return saved

    async def delete_evaluation(self, evaluation_id: str) -> None:
        await self.repos.evaluations.delete(evaluation_id)
        await self._reload("evaluations")

    # ------------------------------------------------------------------
    # Admins and page visibility

    @staticmethod
    def _require_super_admin(actor: Optional[Admin], action: str) -> Admin:
        if actor is None or not actor.is_super_admin:
            raise PermissionDenied(f"Only a super-admin may {action}")
        return actor

    async def resolve_admin(self, uid: str, email: str | None = None) -> Admin:
        """Admin record for a signed-in user; unknown users (or a failed lookup) get read-only access."""
        try:
            admin = await self.repos.admins.resolve(uid, email)
        except RemoteStoreError as exc:
            LOGGER.warning("Admin lookup failed; using read-only access", extra={"uid": uid, "error": exc.user_message})
            admin = None
        return admin or Admin(id=uid, email=email or "", type="admin", permissions=AdminPermissions())

    async def save_admin(
        self,
        actor: Optional[Admin],
        admin_id: str,
        email: str,
        *,
        admin_type: AdminType = "admin",
        permissions: AdminPermissions | Mapping[str, bool] | None = None,
        password: str | None = None,
        creating: bool = False,
    ) -> Admin:
        actor = self._require_super_admin(actor, "manage admins")
        rules.validate_admin_fields(email, password, creating=creating).raise_if_invalid("admin")
        if not isinstance(permissions, AdminPermissions):
            permissions = AdminPermissions.model_validate(permissions or {})
        existing = next((a for a in self.state.admins if a.id == admin_id), None)
        admin = Admin(
            id=admin_id,
            email=email.strip(),
            type=admin_type,
            permissions=permissions,
            created_at=existing.created_at if existing else utc_now_iso(),
        )
        await self.repos.admins.put(admin, actor=actor.id)
        await self._reload("admins")
        return admin

    async def delete_admin(self, actor: Optional[Admin], admin_id: str) -> None:
        actor = self._require_super_admin(actor, "delete admins")
        if actor.id == admin_id:
            raise PermissionDenied("Admins cannot delete their own account")
        await self.repos.admins.delete(admin_id, actor=actor.id)
        await self._reload("admins")

    async def load_page_visibility(self, *, bypass_cache: bool = False) -> PageVisibility:
        data = await self.repos.settings.load(PAGE_VISIBILITY_DOC, bypass_cache=bypass_cache)
        self.state.page_visibility = PageVisibility.from_document(data)
        return self.state.page_visibility

    async def save_page_visibility(
        self, actor: Optional[Admin], visibility: PageVisibility | Mapping[str, bool]
    ) -> PageVisibility:
        actor = self._require_super_admin(actor, "change page visibility")
        if not isinstance(visibility, PageVisibility):
            visibility = PageVisibility.from_document(visibility)
        await self.repos.settings.save(PAGE_VISIBILITY_DOC, visibility.to_document(), actor=actor.id)
        self.state.page_visibility = visibility
        return visibility

    def can_view(self, page: Page | str, admin: Optional[Admin]) -> AccessDecision:
        return check_page_access(Page(page), self.state.page_visibility, admin)

    # ------------------------------------------------------------------
    # CSV

    async def import_students_csv(self, text: str) -> ImportReport:
        """Insert every valid row; invalid rows are counted and reported, never fatal."""
        groups = await self.repos.groups.load_all()
        existing = await self.repos.students.load_all()
        report = ImportReport()
        accepted: List[Student] = []
        for row in parse_student_rows(text, groups):
            result = rules.check_student(row.student, existing + accepted)
            reasons = row.problems + [err for err in result.errors if err not in row.problems]
            if reasons:
                report.fail(row.line_number, reasons)
                continue
            try:
                created = await self.repos.students.insert(row.student.model_copy(update={"created_at": utc_now_iso()}))
            except RemoteStoreError as exc:
                report.fail(row.line_number, [exc.user_message])
                continue
            accepted.append(created)
            report.imported.append(created)
            report.succeeded += 1
        LOGGER.info("CSV import finished", extra={"succeeded": report.succeeded, "failed": report.failed})
        await self._reload("students")
        return report

    def export_bundle(self, directory: Path) -> Dict[str, Path]:
        return write_export_bundle(
            directory,
            groups=self.state.groups,
            students=self.state.students,
            tasks=self.state.tasks,
            evaluations=self.state.evaluations,
        )

    # ------------------------------------------------------------------
    # Views

    def student_rankings(self) -> List[scoring.StudentStanding]:
        return scoring.rank_students(self.state.students, self.state.evaluations)

    def group_rankings(self) -> List[scoring.GroupStanding]:
        return scoring.rank_groups(self.state.groups, self.state.students, self.state.evaluations)

    def task_averages(self) -> List[Tuple[Task, float]]:
        return [(task, scoring.task_average_score(self.state.evaluations, task.id)) for task in self.state.tasks]

    def group_statistics(self, group_id: str) -> scoring.GroupStatistics:
        return scoring.group_statistics(group_id, self.state.students, self.state.tasks, self.state.evaluations)

    def dashboard(self) -> scoring.DashboardSummary:
        return scoring.dashboard_summary(
            self.state.groups, self.state.students, self.state.tasks, self.state.evaluations
        )

    def logout(self) -> None:
        """Drop every cached entry in the namespace and forget loaded state."""
        self.cache.clear_all()
        self.state = EvaluatorState()


__all__ = ["EvaluationDraft", "EvaluatorService", "EvaluatorState", "LoadReport"]
