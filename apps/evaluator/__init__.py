"""Group/student evaluation domain: records, rules, scoring, CSV and the service facade."""
from .access import AccessDecision, Page, PageVisibility, check_page_access
from .models import Admin, Evaluation, Group, Role, ScoringOption, Student, StudentScore, Task
from .repositories import Repositories
from .service import EvaluationDraft, EvaluatorService, EvaluatorState, LoadReport

__all__ = [
    "AccessDecision",
    "Admin",
    "EvaluationDraft",
    "Evaluation",
    "EvaluatorService",
    "EvaluatorState",
    "Group",
    "LoadReport",
    "Page",
    "PageVisibility",
    "Repositories",
    "Role",
    "ScoringOption",
    "Student",
    "StudentScore",
    "Task",
    "check_page_access",
]
