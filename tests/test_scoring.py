from __future__ import annotations

import unittest

from apps.evaluator import scoring
from apps.evaluator.models import Evaluation, Group, Role, ScoringOption, Student, StudentScore, Task


def _student(student_id: str, group_id: str, **extra) -> Student:
    return Student(
        id=student_id,
        name=extra.pop("name", student_id.upper()),
        roll=extra.pop("roll", student_id),
        group_id=group_id,
        **extra,
    )


def _score(task: float = 0, teamwork: float = 0, *options: str) -> dict:
    return {
        "taskScore": task,
        "teamworkScore": teamwork,
        "optionMarks": {option: {"selected": True, "optionId": option} for option in options},
    }


def _evaluation(eval_id: str, task_id: str, group_id: str, scores: dict) -> Evaluation:
    return Evaluation.model_validate({"id": eval_id, "taskId": task_id, "groupId": group_id, "scores": scores})


class WorkedScenarioTests(unittest.TestCase):
    """Task T (max 100), group G with S1 and S2, weekly homework worth +15."""

    def setUp(self) -> None:
        self.evaluation = _evaluation(
            "e1",
            "T",
            "G",
            {"S1": _score(80, 8, "weekly_homework"), "S2": _score(60, 5)},
        )

    def test_raw_scores(self) -> None:
        self.assertEqual(scoring.student_raw_score(self.evaluation, "S1"), 103)
        self.assertEqual(scoring.student_raw_score(self.evaluation, "S2"), 65)
        self.assertEqual(scoring.student_raw_score(self.evaluation, "S3"), 0)

    def test_task_and_evaluation_averages(self) -> None:
        self.assertEqual(scoring.task_average_score([self.evaluation], "T"), 84)
        self.assertEqual(scoring.evaluation_average_score(self.evaluation), 84)
        self.assertEqual(scoring.evaluation_total_score(self.evaluation), 168)

    def test_weekly_homework_option_value(self) -> None:
        self.assertEqual(ScoringOption.WEEKLY_HOMEWORK.marks, 15)
        self.assertEqual(ScoringOption.CANNOT_DO.marks, -5)
        self.assertIsNone(ScoringOption.lookup("extra_credit"))


class EmptyDataTests(unittest.TestCase):
    def test_no_division_by_zero(self) -> None:
        self.assertEqual(scoring.student_average_score([], "nobody"), 0)
        self.assertEqual(scoring.task_average_score([], "T"), 0)
        self.assertEqual(scoring.group_average_score([_student("s1", "G")], [], "G"), 0)
        self.assertEqual(scoring.evaluation_average_score(_evaluation("e", "T", "G", {})), 0)

    def test_null_scores_and_missing_numbers_default_to_zero(self) -> None:
        evaluation = Evaluation.model_validate(
            {"id": "e", "taskId": "T", "groupId": "G", "scores": {"s1": {"taskScore": None}}}
        )
        self.assertEqual(scoring.student_raw_score(evaluation, "s1"), 0)
        self.assertEqual(scoring.student_evaluation_count([evaluation], "s1"), 1)
        empty = Evaluation.model_validate({"id": "e2", "taskId": "T", "groupId": "G", "scores": None})
        self.assertEqual(empty.scores, {})


class OptionMarkTests(unittest.TestCase):
    def test_unknown_and_unselected_options_contribute_nothing(self) -> None:
        score = StudentScore.model_validate(
            {
                "taskScore": 10,
                "optionMarks": {
                    "bonus": {"selected": True, "optionId": "made_up"},
                    "cannot_do": {"selected": False, "optionId": "cannot_do"},
                    "learned_can_write": {"selected": True},
                },
            }
        )
        self.assertEqual(scoring.option_marks_total(score), 10)
        self.assertEqual(scoring.score_entry_total(score), 20)

    def test_negative_marks_are_applied(self) -> None:
        score = StudentScore.model_validate(_score(3, 1, "cannot_do"))
        self.assertEqual(scoring.score_entry_total(score), -1)


class StudentAggregateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.evaluations = [
            _evaluation("e1", "T1", "G", {"a": _score(50, 10), "b": _score(40, 5)}),
            _evaluation("e2", "T2", "G", {"a": _score(30, 10)}),
        ]

    def test_totals_counts_and_averages(self) -> None:
        self.assertEqual(scoring.student_total_score(self.evaluations, "a"), 100)
        self.assertEqual(scoring.student_evaluation_count(self.evaluations, "a"), 2)
        self.assertEqual(scoring.student_average_score(self.evaluations, "a"), 50)
        self.assertEqual(scoring.student_evaluation_count(self.evaluations, "b"), 1)
        self.assertEqual(scoring.student_average_score(self.evaluations, "b"), 45)

    def test_partial_submission_only_counts_submitted_students(self) -> None:
        self.assertEqual(scoring.task_average_score(self.evaluations, "T2"), 40)


class GroupAggregateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.students = [
            _student("a", "G1"),
            _student("b", "G1"),
            _student("c", "G1"),  # never scored
            _student("d", "G2"),
        ]
        self.evaluations = [
            _evaluation("e1", "T1", "G1", {"a": _score(90, 10), "b": _score(50, 10)}),
            _evaluation("e2", "T2", "G1", {"a": _score(70, 10)}),
            _evaluation("e3", "T1", "G2", {"d": _score(30, 0)}),
        ]

    def test_group_average_is_mean_of_scored_member_averages(self) -> None:
        # a averages 90, b averages 60, c is excluded.
        self.assertEqual(scoring.group_average_score(self.students, self.evaluations, "G1"), 75)

    def test_unrelated_group_changes_do_not_affect_average(self) -> None:
        before = scoring.group_average_score(self.students, self.evaluations, "G1")
        changed = self.evaluations[:2] + [_evaluation("e3", "T1", "G2", {"d": _score(100, 10)})]
        self.assertEqual(scoring.group_average_score(self.students, changed, "G1"), before)

    def test_group_statistics(self) -> None:
        tasks = [
            Task(id="T1", name="Intro", description="d", max_score=100, date="2024-01-01"),
            Task(id="T2", name="Loops", description="d", max_score=100, date="2024-01-08"),
            Task(id="T3", name="Unused", description="d", max_score=100, date="2024-01-15"),
        ]
        stats = scoring.group_statistics("G1", self.students, tasks, self.evaluations)

        self.assertEqual(stats.member_count, 3)
        self.assertEqual(stats.evaluation_count, 3)
        self.assertEqual(stats.average, 75)
        self.assertEqual(stats.best_member_average, 90)
        self.assertEqual([item.task.id for item in stats.task_performance], ["T1", "T2"])
        intro = stats.task_performance[0]
        self.assertEqual(intro.average, 80)
        self.assertEqual(intro.submissions, 2)
        self.assertEqual(intro.completion_rate, 67)


class RankingTests(unittest.TestCase):
    def test_rank_students_descending_with_id_tiebreak(self) -> None:
        students = [_student("s3", "G"), _student("s1", "G"), _student("s2", "G"), _student("s4", "G")]
        evaluations = [
            _evaluation("e1", "T", "G", {"s3": _score(50), "s1": _score(50), "s2": _score(80)}),
        ]
        standings = scoring.rank_students(students, evaluations)

        self.assertEqual([s.student.id for s in standings], ["s2", "s1", "s3"])
        self.assertEqual([s.rank for s in standings], [1, 2, 3])
        self.assertEqual(standings[0].average, 80)
        self.assertEqual(standings[0].count, 1)

    def test_rank_groups_puts_unscored_groups_last(self) -> None:
        groups = [Group(id="g-empty", name="Empty"), Group(id="g-b", name="B"), Group(id="g-a", name="A")]
        students = [_student("x", "g-a"), _student("y", "g-b"), _student("z", "g-empty")]
        evaluations = [_evaluation("e", "T", "g-a", {"x": _score(40)}), _evaluation("f", "T", "g-b", {"y": _score(40)})]

        standings = scoring.rank_groups(groups, students, evaluations)

        self.assertEqual([s.group.id for s in standings], ["g-a", "g-b", "g-empty"])
        self.assertEqual(standings[-1].average, 0)
        self.assertFalse(standings[-1].has_scores)
        self.assertEqual(standings[-1].member_count, 1)

    def test_rank_groups_orders_by_average(self) -> None:
        groups = [Group(id="g1", name="One"), Group(id="g2", name="Two")]
        students = [_student("a", "g1"), _student("b", "g2")]
        evaluations = [_evaluation("e", "T", "g1", {"a": _score(10)}), _evaluation("f", "T", "g2", {"b": _score(90)})]

        standings = scoring.rank_groups(groups, students, evaluations)
        self.assertEqual([s.group.id for s in standings], ["g2", "g1"])


class SummaryTests(unittest.TestCase):
    def test_option_stats_and_dashboard(self) -> None:
        groups = [Group(id="g1", name="One")]
        students = [
            _student("a", "g1", gender="female", academic_group="Science", role=Role.TEAM_LEADER),
            _student("b", "g1", gender="male", academic_group="Science"),
        ]
        tasks = [
            Task(id="T1", name="Intro", description="d", max_score=100, date="2024-01-01"),
            Task(id="T2", name="Later", description="d", max_score=100, date="2024-02-01"),
        ]
        evaluations = [
            _evaluation("e1", "T1", "g1", {"a": _score(10, 1, "weekly_attendance", "weekly_homework"), "b": _score(5)}),
        ]

        stats = scoring.option_selection_stats(evaluations)
        self.assertEqual(stats.total_submissions, 2)
        self.assertEqual(stats.counts[ScoringOption.WEEKLY_ATTENDANCE], 1)
        self.assertEqual(stats.counts[ScoringOption.CANNOT_DO], 0)
        self.assertEqual(stats.as_dict()["total_submissions"], 2)

        summary = scoring.dashboard_summary(groups, students, tasks, evaluations)
        self.assertEqual(summary.total_students, 2)
        self.assertEqual(summary.evaluated_tasks, 1)
        self.assertEqual(summary.pending_tasks, 1)
        self.assertEqual(summary.students_without_role, 1)
        self.assertEqual(summary.gender_distribution, {"female": 1, "male": 1})
        self.assertEqual(summary.academic_group_distribution, {"Science": 2})
        self.assertEqual(summary.top_group.group.id, "g1")


if __name__ == "__main__":
    unittest.main()
