from __future__ import annotations

import csv
import io
from pathlib import Path

from apps.evaluator import csv_io
from apps.evaluator.models import Evaluation, Group, Role, Student, Task

GROUPS = [Group(id="g1", name="Group A"), Group(id="g2", name="Group B")]


def _rows(text: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(text)))


def test_parse_csv_line_keeps_commas_inside_quotes() -> None:
    assert csv_io.parse_csv_line('"Hasan, Zahid",101,"a ""quoted"" word"') == [
        "Hasan, Zahid",
        "101",
        'a "quoted" word',
    ]


def test_parse_student_rows_skips_header_blank_and_short_lines() -> None:
    text = "\n".join(
        [
            "নাম,রোল,জেন্ডার,গ্রুপ আইডি,যোগাযোগ,একাডেমিক গ্রুপ,সেশন,দায়িত্ব",
            "",
            '"Hasan, Zahid",101,male,g1,0171,Science,2023-24,team-leader',
            "too,short,row",
            ",,,,,,,",
            "Lone,,,,,,,",
            "Bina,102,female,group b,0172,Arts,2023-24,Reporter",
            "Chayan,103,male,GROUP A,,Science,2023-24,টাইম কিপার",
            "Dipa,104,female,g2,0174,Arts,2023-24,captain",
        ]
    )
    rows = csv_io.parse_student_rows(text, GROUPS)

    assert [row.student.name for row in rows] == ["Hasan, Zahid", "Bina", "Chayan", "Dipa"]
    assert rows[0].line_number == 3
    assert rows[1].line_number == 7
    assert rows[0].student.group_id == "g1"
    assert rows[0].student.role is Role.TEAM_LEADER
    assert rows[1].student.group_id == "g2"
    assert rows[1].student.role is Role.REPORTER
    assert rows[2].student.role is Role.TIME_KEEPER
    assert rows[3].student.role is None
    assert rows[2].student.group_id == "g1"
    assert all(not row.problems for row in rows)


def test_unknown_group_reference_is_reported() -> None:
    rows = csv_io.parse_student_rows("Eva,105,female,ghost,0175,Arts", GROUPS)
    assert len(rows) == 1
    assert rows[0].student.group_id is None
    assert rows[0].student.session == ""
    assert rows[0].problems == ["unknown group 'ghost'"]


def test_english_header_is_detected() -> None:
    text = "Name,Roll,Gender,Group,Contact,Academic Group,Session,Role\nEva,105,female,g1,0175,Arts,2023-24,"
    rows = csv_io.parse_student_rows(text, GROUPS)
    assert [row.student.roll for row in rows] == ["105"]


def test_header_words_match_inside_longer_cells() -> None:
    text = "Student Name,Roll No,Gender,Group ID,Contact,Academic Group,Session,Role\nEva,105,female,g1,0175,Arts,2023-24,"
    rows = csv_io.parse_student_rows(text, GROUPS)
    assert [(row.line_number, row.student.name) for row in rows] == [(2, "Eva")]
    assert not rows[0].problems


def test_first_data_row_is_not_mistaken_for_a_header() -> None:
    rows = csv_io.parse_student_rows("Rolland Nameer,106,male,g1,0176,Science,2023-24,", GROUPS)
    assert [row.student.name for row in rows] == ["Rolland Nameer"]


def test_export_students_resolves_group_names_and_quotes_fields() -> None:
    students = [
        Student(id="s1", name="Hasan, Zahid", roll="101", gender="male", group_id="g1", role=Role.TEAM_LEADER),
        Student(id="s2", name="Orphan", roll="102", gender="female", group_id="gone"),
    ]
    text = csv_io.export_students_csv(students, GROUPS)

    assert text.splitlines()[1].startswith('"Hasan, Zahid","101","male","Group A"')
    rows = _rows(text)
    assert rows[0] == csv_io.STUDENT_COLUMNS
    assert rows[1][-1] == "Team Leader"
    assert rows[2][3] == ""


def test_export_groups_counts_members() -> None:
    students = [Student(id="s1", name="A", roll="1", group_id="g1"), Student(id="s2", name="B", roll="2", group_id="g1")]
    assert _rows(csv_io.export_groups_csv(GROUPS, students)) == [
        ["Group Name", "Members"],
        ["Group A", "2"],
        ["Group B", "0"],
    ]


def test_export_evaluations_one_row_per_known_student() -> None:
    tasks = [Task(id="t1", name="Quiz", description="d", max_score=100, date="2024-01-01")]
    students = [Student(id="s1", name="A", roll="1", group_id="g1")]
    evaluation = Evaluation.model_validate(
        {
            "id": "e1",
            "taskId": "t1",
            "groupId": "g1",
            "updatedAt": "2024-01-05T10:00:00+00:00",
            "scores": {
                "s1": {"taskScore": 80, "teamworkScore": 8, "optionMarks": {"weekly_homework": {"selected": True}}},
                "deleted": {"taskScore": 10},
            },
        }
    )
    rows = _rows(csv_io.export_evaluations_csv([evaluation], tasks, GROUPS, students))
    assert rows == [
        csv_io.EVALUATION_COLUMNS,
        ["Quiz", "Group A", "A", "80", "8", "15", "103", "2024-01-05"],
    ]


def test_template_has_header_and_example_row() -> None:
    rows = _rows(csv_io.student_template_csv())
    assert rows[0] == csv_io.STUDENT_COLUMNS
    assert len(rows[1]) == len(csv_io.STUDENT_COLUMNS)
    assert csv_io.parse_student_rows(csv_io.student_template_csv(), [Group(id="group1", name="One")])[0].student.role is Role.TEAM_LEADER


def test_write_export_bundle(tmp_path: Path) -> None:
    written = csv_io.write_export_bundle(
        tmp_path / "exports",
        groups=GROUPS,
        students=[],
        tasks=[],
        evaluations=[],
    )
    assert sorted(written) == ["evaluations", "groups", "students"]
    assert (tmp_path / "exports" / "students.csv").read_text(encoding="utf-8").startswith('"Name"')
    assert written["groups"].name == "groups.csv"
