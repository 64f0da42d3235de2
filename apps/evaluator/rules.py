"""Checks that must pass before a record is written to the store.

Each validator returns every violation it finds; callers raise
``ValidationFailure`` from the combined result so nothing is written when any
rule fails.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Optional

from smarteval.core.validation import ValidationResult

from .models import ScoringOption, Student, StudentScore, Task

DUPLICATE_ROLL = "duplicate roll in academic group"
ROLE_TAKEN = "role already assigned in group"

STUDENT_NAME_MAX = 100
STUDENT_ROLL_MAX = 20
TASK_NAME_MAX = 100
TASK_DESCRIPTION_MAX = 500
TASK_MAX_SCORE_RANGE = (1, 1000)
GROUP_NAME_MAX = 50
TEAMWORK_MAX = 10
PASSWORD_MIN = 6

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_student_uniqueness(
    candidate: Student,
    existing: Iterable[Student],
    exclude_id: Optional[str] = None,
) -> List[str]:
    """Return every uniqueness violation for ``candidate`` against ``existing``.

    ``exclude_id`` skips the record being edited so it does not collide with
    itself.
    """

    violations: List[str] = []
    others = [s for s in existing if not (exclude_id and s.id == exclude_id)]

    roll_clash = next(
        (s for s in others if s.roll == candidate.roll and s.academic_group == candidate.academic_group),
        None,
    )
    if roll_clash is not None:
        violations.append(
            f"{DUPLICATE_ROLL}: roll {candidate.roll} already exists in {candidate.academic_group or 'this academic group'}"
        )

    if candidate.role is not None:
        holder = next(
            (s for s in others if s.group_id == candidate.group_id and s.role == candidate.role),
            None,
        )
        if holder is not None:
            violations.append(f"{ROLE_TAKEN}: {candidate.role.label} is already held by {holder.name}")

    return violations


def validate_student_fields(student: Student) -> ValidationResult:
    errors: List[str] = []
    required = {
        "name": student.name,
        "roll": student.roll,
        "gender": student.gender,
        "groupId": student.group_id,
        "academicGroup": student.academic_group,
        "session": student.session,
    }
    for label, value in required.items():
        if not (value or "").strip():
            errors.append(f"{label} is required")
    if len(student.name) > STUDENT_NAME_MAX:
        errors.append(f"name must be at most {STUDENT_NAME_MAX} characters")
    if len(student.roll) > STUDENT_ROLL_MAX:
        errors.append(f"roll must be at most {STUDENT_ROLL_MAX} characters")
    return ValidationResult.from_errors(errors, data=student)


def check_student(
    student: Student,
    existing: Iterable[Student],
    exclude_id: Optional[str] = None,
) -> ValidationResult:
    """Field constraints plus uniqueness, combined into one result."""
    fields = validate_student_fields(student)
    uniqueness = ValidationResult.from_errors(validate_student_uniqueness(student, existing, exclude_id))
    return fields.merge(uniqueness)


def validate_task_fields(name: Any, description: Any, max_score: Any, date: Any) -> ValidationResult:
    errors: List[str] = []
    name_text = str(name or "").strip()
    description_text = str(description or "").strip()
    if not name_text:
        errors.append("name is required")
    elif len(name_text) > TASK_NAME_MAX:
        errors.append(f"name must be at most {TASK_NAME_MAX} characters")
    if not description_text:
        errors.append("description is required")
    elif len(description_text) > TASK_DESCRIPTION_MAX:
        errors.append(f"description must be at most {TASK_DESCRIPTION_MAX} characters")
    if not str(date or "").strip():
        errors.append("date is required")

    low, high = TASK_MAX_SCORE_RANGE
    if max_score is None or max_score == "":
        errors.append("maxScore is required")
    else:
        try:
            numeric = float(max_score)
        except (TypeError, ValueError):
            numeric = None
        if isinstance(max_score, bool) or numeric is None or not numeric.is_integer():
            errors.append("maxScore must be a whole number")
        elif not low <= numeric <= high:
            errors.append(f"maxScore must be between {low} and {high}")
    return ValidationResult.from_errors(errors)


def validate_group_name(name: Any) -> ValidationResult:
    text = str(name or "").strip()
    if not text:
        return ValidationResult.from_errors(["group name is required"])
    if len(text) > GROUP_NAME_MAX:
        return ValidationResult.from_errors([f"group name must be at most {GROUP_NAME_MAX} characters"])
    return ValidationResult.from_errors([], data=text)


def validate_evaluation_scores(task: Task, scores: Mapping[str, StudentScore]) -> ValidationResult:
    """Bounds: taskScore in [0, task.maxScore], teamworkScore in [0, 10].

    Unknown option ids are not errors; they score 0 and are reported as
    warnings.
    """

    errors: List[str] = []
    warnings: List[str] = []
    for student_id, score in scores.items():
        if not 0 <= score.task_score <= task.max_score:
            errors.append(f"{student_id}: taskScore must be between 0 and {task.max_score}")
        if not 0 <= score.teamwork_score <= TEAMWORK_MAX:
            errors.append(f"{student_id}: teamworkScore must be between 0 and {TEAMWORK_MAX}")
        for option_id in score.selected_options():
            if ScoringOption.lookup(option_id) is None:
                warnings.append(f"{student_id}: unknown option {option_id!r} ignored")
    result = ValidationResult.from_errors(errors)
    result.warnings = warnings
    return result


def validate_admin_fields(email: Any, password: Optional[str], *, creating: bool) -> ValidationResult:
    errors: List[str] = []
    email_text = str(email or "").strip()
    if not email_text:
        errors.append("email is required")
    elif not EMAIL_PATTERN.match(email_text):
        errors.append("email is not a valid address")
    if creating and not password:
        errors.append("password is required for a new admin")
    if password and len(password) < PASSWORD_MIN:
        errors.append(f"password must be at least {PASSWORD_MIN} characters")
    return ValidationResult.from_errors(errors)


__all__ = [
    "DUPLICATE_ROLL",
    "ROLE_TAKEN",
    "check_student",
    "validate_admin_fields",
    "validate_evaluation_scores",
    "validate_group_name",
    "validate_student_fields",
    "validate_student_uniqueness",
    "validate_task_fields",
]
