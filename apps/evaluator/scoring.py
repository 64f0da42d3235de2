"""Scoring and ranking over explicit entity collections.

Every function here is pure and total: missing scores, unknown option ids and
empty collections degrade to 0 instead of raising. A student's *raw score* for
one evaluation is ``taskScore + teamworkScore + sum(selected option marks)``.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .models import Evaluation, Group, ScoringOption, Student, StudentScore, Task


def _mean(total: float, count: int) -> float:
    return total / count if count else 0.0


def option_marks_total(score: StudentScore) -> float:
    """Sum the marks of selected options; unknown option ids contribute 0."""
    total = 0
    for mark in score.option_marks.values():
        if not mark.selected:
            continue
        option = ScoringOption.lookup(mark.option_id)
        if option is not None:
            total += option.marks
    return total


def score_entry_total(score: StudentScore) -> float:
    return (score.task_score or 0) + (score.teamwork_score or 0) + option_marks_total(score)


def student_raw_score(evaluation: Evaluation, student_id: str) -> float:
    score = evaluation.scores.get(student_id)
    return score_entry_total(score) if score is not None else 0.0


def student_total_score(evaluations: Iterable[Evaluation], student_id: str) -> float:
    return sum(student_raw_score(ev, student_id) for ev in evaluations if student_id in ev.scores)


def student_evaluation_count(evaluations: Iterable[Evaluation], student_id: str) -> int:
    return sum(1 for ev in evaluations if student_id in ev.scores)


def student_average_score(evaluations: Sequence[Evaluation], student_id: str) -> float:
    return _mean(
        student_total_score(evaluations, student_id),
        student_evaluation_count(evaluations, student_id),
    )


def task_average_score(evaluations: Iterable[Evaluation], task_id: str) -> float:
    """Average per student submission across every evaluation of the task.

    The denominator counts every ``scores`` entry, including students who have
    since left the group.
    """
    total = 0.0
    count = 0
    for ev in evaluations:
        if ev.task_id != task_id:
            continue
        for score in ev.scores.values():
            total += score_entry_total(score)
            count += 1
    return _mean(total, count)


def evaluation_total_score(evaluation: Evaluation) -> float:
    return sum(score_entry_total(score) for score in evaluation.scores.values())


def evaluation_average_score(evaluation: Evaluation) -> float:
    return _mean(evaluation_total_score(evaluation), len(evaluation.scores))


@dataclass
class _Tally:
    total: float = 0.0
    count: int = 0

    @property
    def average(self) -> float:
        return _mean(self.total, self.count)


def _tally_by_student(evaluations: Iterable[Evaluation]) -> Dict[str, _Tally]:
    tallies: Dict[str, _Tally] = {}
    for ev in evaluations:
        for student_id, score in ev.scores.items():
            tally = tallies.setdefault(student_id, _Tally())
            tally.total += score_entry_total(score)
            tally.count += 1
    return tallies


def _group_average(members: Iterable[Student], tallies: Dict[str, _Tally]) -> tuple[float, int]:
    averages = [tallies[s.id].average for s in members if s.id in tallies and tallies[s.id].count]
    return _mean(sum(averages), len(averages)), len(averages)


def group_average_score(students: Iterable[Student], evaluations: Iterable[Evaluation], group_id: str) -> float:
    """Mean of member averages over members with at least one score entry."""
    members = [s for s in students if s.group_id == group_id]
    average, _ = _group_average(members, _tally_by_student(evaluations))
    return average


@dataclass
class StudentStanding:
    student: Student
    total: float
    count: int
    average: float
    rank: int = 0


@dataclass
class GroupStanding:
    group: Group
    average: float
    member_count: int
    scored_member_count: int
    rank: int = 0

    @property
    def has_scores(self) -> bool:
        return self.scored_member_count > 0


def rank_students(students: Iterable[Student], evaluations: Iterable[Evaluation]) -> List[StudentStanding]:
    """Scored students by descending average; equal averages order by student id."""
    tallies = _tally_by_student(evaluations)
    standings = [
        StudentStanding(student=s, total=tallies[s.id].total, count=tallies[s.id].count, average=tallies[s.id].average)
        for s in students
        if s.id in tallies and tallies[s.id].count > 0
    ]
    standings.sort(key=lambda item: (-item.average, item.student.id))
    for index, standing in enumerate(standings, start=1):
        standing.rank = index
    return standings


def rank_groups(
    groups: Iterable[Group],
    students: Iterable[Student],
    evaluations: Iterable[Evaluation],
) -> List[GroupStanding]:
    """Every group by descending average; unscored groups last with 0, ties by id."""
    tallies = _tally_by_student(evaluations)
    roster: Dict[str, List[Student]] = {}
    for student in students:
        if student.group_id:
            roster.setdefault(student.group_id, []).append(student)

    standings = []
    for group in groups:
        members = roster.get(group.id, [])
        average, scored = _group_average(members, tallies)
        standings.append(
            GroupStanding(group=group, average=average, member_count=len(members), scored_member_count=scored)
        )
    standings.sort(key=lambda item: (not item.has_scores, -item.average, item.group.id))
    for index, standing in enumerate(standings, start=1):
        standing.rank = index
    return standings


@dataclass
class OptionSelectionStats:
    total_submissions: int = 0
    counts: Dict[ScoringOption, int] = field(default_factory=lambda: {option: 0 for option in ScoringOption})

    def as_dict(self) -> Dict[str, int]:
        payload = {option.value: count for option, count in self.counts.items()}
        payload["total_submissions"] = self.total_submissions
        return payload


def option_selection_stats(evaluations: Iterable[Evaluation]) -> OptionSelectionStats:
    """Count submissions and how often each known option was ticked."""
    stats = OptionSelectionStats()
    for ev in evaluations:
        for score in ev.scores.values():
            stats.total_submissions += 1
            for option_id in score.selected_options():
                option = ScoringOption.lookup(option_id)
                if option is not None:
                    stats.counts[option] += 1
    return stats


@dataclass
class TaskPerformance:
    task: Task
    average: float
    submissions: int
    completion_rate: int


@dataclass
class GroupStatistics:
    group_id: str
    member_count: int
    evaluation_count: int
    average: float
    best_member_average: float
    task_performance: List[TaskPerformance] = field(default_factory=list)


def group_statistics(
    group_id: str,
    students: Iterable[Student],
    tasks: Iterable[Task],
    evaluations: Sequence[Evaluation],
) -> GroupStatistics:
    """Per-group breakdown used by the group analysis view.

    ``completion_rate`` is the share of current members with a score entry in
    the group's evaluation of that task, as a whole percentage.
    """
    members = [s for s in students if s.group_id == group_id]
    member_ids = {s.id for s in members}
    tallies = _tally_by_student(evaluations)
    average, _ = _group_average(members, tallies)
    member_averages = [tallies[s.id].average for s in members if s.id in tallies]

    group_evaluations = [ev for ev in evaluations if ev.group_id == group_id]
    performance: List[TaskPerformance] = []
    for task in tasks:
        task_evaluations = [ev for ev in group_evaluations if ev.task_id == task.id]
        if not task_evaluations:
            continue
        entries = [score for ev in task_evaluations for score in ev.scores.values()]
        completed = {sid for ev in task_evaluations for sid in ev.scores if sid in member_ids}
        rate = round(len(completed) / len(members) * 100) if members else 0
        performance.append(
            TaskPerformance(
                task=task,
                average=_mean(sum(score_entry_total(score) for score in entries), len(entries)),
                submissions=len(entries),
                completion_rate=rate,
            )
        )

    return GroupStatistics(
        group_id=group_id,
        member_count=len(members),
        evaluation_count=sum(tallies[s.id].count for s in members if s.id in tallies),
        average=average,
        best_member_average=max(member_averages, default=0.0),
        task_performance=performance,
    )


@dataclass
class DashboardSummary:
    total_groups: int
    total_students: int
    total_tasks: int
    total_evaluations: int
    evaluated_tasks: int
    pending_tasks: int
    students_without_role: int
    gender_distribution: Dict[str, int]
    academic_group_distribution: Dict[str, int]
    option_stats: OptionSelectionStats
    top_group: Optional[GroupStanding] = None


def dashboard_summary(
    groups: Sequence[Group],
    students: Sequence[Student],
    tasks: Sequence[Task],
    evaluations: Sequence[Evaluation],
) -> DashboardSummary:
    evaluated_task_ids = {ev.task_id for ev in evaluations}
    evaluated = sum(1 for task in tasks if task.id in evaluated_task_ids)
    rankings = rank_groups(groups, students, evaluations)
    top = rankings[0] if rankings and rankings[0].has_scores else None
    return DashboardSummary(
        total_groups=len(groups),
        total_students=len(students),
        total_tasks=len(tasks),
        total_evaluations=len(evaluations),
        evaluated_tasks=evaluated,
        pending_tasks=len(tasks) - evaluated,
        students_without_role=sum(1 for s in students if s.role is None),
        gender_distribution=dict(Counter(s.gender or "unknown" for s in students)),
        academic_group_distribution=dict(Counter(s.academic_group or "unknown" for s in students)),
        option_stats=option_selection_stats(evaluations),
        top_group=top,
    )


__all__ = [
    "DashboardSummary",
    "GroupStanding",
    "GroupStatistics",
    "OptionSelectionStats",
    "StudentStanding",
    "TaskPerformance",
    "dashboard_summary",
    "evaluation_average_score",
    "evaluation_total_score",
    "group_average_score",
    "group_statistics",
    "option_marks_total",
    "option_selection_stats",
    "rank_groups",
    "rank_students",
    "score_entry_total",
    "student_average_score",
    "student_evaluation_count",
    "student_raw_score",
    "student_total_score",
    "task_average_score",
]
