"""CSV import of students and CSV export of every collection."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .models import Evaluation, Group, Role, Student, Task
from .scoring import option_marks_total, score_entry_total

MIN_FIELDS = 6

STUDENT_COLUMNS = ["Name", "Roll", "Gender", "Group", "Contact", "Academic Group", "Session", "Role"]
GROUP_COLUMNS = ["Group Name", "Members"]
EVALUATION_COLUMNS = [
    "Task",
    "Group",
    "Student",
    "Task Score",
    "Teamwork Score",
    "Option Marks",
    "Total Score",
    "Date",
]
TEMPLATE_EXAMPLE = ["Zahid Hasan", "101", "male", "group1", "01712345678", "Science", "2023-24", "team-leader"]

# A first line with one of these words anywhere in a cell is a header row.
HEADER_TOKENS = {"name", "roll", "নাম", "রোল"}


def parse_csv_line(line: str) -> List[str]:
    """Split one line on commas, keeping commas inside double quotes."""
    rows = list(csv.reader([line]))
    return rows[0] if rows else []


def _is_header(fields: Sequence[str]) -> bool:
    return any(HEADER_TOKENS.intersection(cell.lower().split()) for cell in fields)


@dataclass
class CsvStudentRow:
    """One parsed data line; ``problems`` are issues found while parsing."""

    line_number: int
    student: Student
    problems: List[str] = field(default_factory=list)


def _resolve_group(reference: str, groups: Sequence[Group]) -> Optional[str]:
    for group in groups:
        if group.id == reference:
            return group.id
    lowered = reference.lower()
    for group in groups:
        if group.name.strip().lower() == lowered:
            return group.id
    return None


def parse_student_rows(text: str, groups: Sequence[Group]) -> List[CsvStudentRow]:
    """Parse import text into student candidates.

    Blank lines are skipped and lines with fewer than six non-empty fields
    are dropped silently. The group column may hold a group id or a group
    name; the role column may hold a role key or label, anything else means
    no role.
    """

    rows: List[CsvStudentRow] = []
    lines = [(number, line) for number, line in enumerate(text.splitlines(), start=1) if line.strip()]
    if lines and _is_header(parse_csv_line(lines[0][1])):
        lines = lines[1:]

    for number, line in lines:
        cells = [cell.strip() for cell in parse_csv_line(line)]
        if sum(1 for cell in cells if cell) < MIN_FIELDS:
            continue
        cells += [""] * (len(STUDENT_COLUMNS) - len(cells))
        name, roll, gender, group_ref, contact, academic_group, session, role = cells[: len(STUDENT_COLUMNS)]
        problems: List[str] = []
        group_id = _resolve_group(group_ref, groups) if group_ref else None
        if group_ref and group_id is None:
            problems.append(f"unknown group {group_ref!r}")
        student = Student(
            name=name,
            roll=roll,
            gender=gender,
            group_id=group_id,
            contact=contact,
            academic_group=academic_group,
            session=session,
            role=Role.parse(role),
        )
        rows.append(CsvStudentRow(line_number=number, student=student, problems=problems))
    return rows


@dataclass
class ImportReport:
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    imported: List[Student] = field(default_factory=list)

    def fail(self, line_number: int, reasons: Iterable[str]) -> None:
        self.failed += 1
        self.errors.append(f"line {line_number}: " + "; ".join(reasons))


def _writer(buffer: io.StringIO):
    return csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.2f}"


def export_students_csv(students: Iterable[Student], groups: Iterable[Group]) -> str:
    names = {group.id: group.name for group in groups}
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(STUDENT_COLUMNS)
    for student in students:
        writer.writerow(
            [
                student.name,
                student.roll,
                student.gender,
                names.get(student.group_id or "", ""),
                student.contact,
                student.academic_group,
                student.session,
                student.role.label if student.role else "",
            ]
        )
    return buffer.getvalue()


def export_groups_csv(groups: Iterable[Group], students: Iterable[Student]) -> str:
    counts: Dict[str, int] = {}
    for student in students:
        if student.group_id:
            counts[student.group_id] = counts.get(student.group_id, 0) + 1
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(GROUP_COLUMNS)
    for group in groups:
        writer.writerow([group.name, counts.get(group.id, 0)])
    return buffer.getvalue()


def export_evaluations_csv(
    evaluations: Iterable[Evaluation],
    tasks: Iterable[Task],
    groups: Iterable[Group],
    students: Iterable[Student],
) -> str:
    """One row per student score; scores of deleted students are left out."""
    task_names = {task.id: task.name for task in tasks}
    group_names = {group.id: group.name for group in groups}
    student_names = {student.id: student.name for student in students}
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(EVALUATION_COLUMNS)
    for evaluation in evaluations:
        stamp = (evaluation.updated_at or evaluation.created_at or "")[:10]
        for student_id, score in evaluation.scores.items():
            if student_id not in student_names:
                continue
            writer.writerow(
                [
                    task_names.get(evaluation.task_id, ""),
                    group_names.get(evaluation.group_id, ""),
                    student_names[student_id],
                    _number(score.task_score),
                    _number(score.teamwork_score),
                    _number(option_marks_total(score)),
                    _number(score_entry_total(score)),
                    stamp,
                ]
            )
    return buffer.getvalue()


def student_template_csv() -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(STUDENT_COLUMNS)
    writer.writerow(TEMPLATE_EXAMPLE)
    return buffer.getvalue()


def write_export_bundle(
    directory: Path,
    *,
    groups: Sequence[Group],
    students: Sequence[Student],
    tasks: Sequence[Task],
    evaluations: Sequence[Evaluation],
) -> Dict[str, Path]:
    """Write students.csv, groups.csv and evaluations.csv into ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    contents = {
        "students": export_students_csv(students, groups),
        "groups": export_groups_csv(groups, students),
        "evaluations": export_evaluations_csv(evaluations, tasks, groups, students),
    }
    written: Dict[str, Path] = {}
    for kind, text in contents.items():
        path = directory / f"{kind}.csv"
        path.write_text(text, encoding="utf-8")
        written[kind] = path
    return written


__all__ = [
    "CsvStudentRow",
    "ImportReport",
    "export_evaluations_csv",
    "export_groups_csv",
    "export_students_csv",
    "parse_csv_line",
    "parse_student_rows",
    "student_template_csv",
    "write_export_bundle",
]
