"""Typed records for the evaluator collections.

Field names are snake_case in Python and camelCase in stored documents
(``groupId``, ``maxScore``, ``optionMarks``...). Models are lenient on load:
range checks live in ``apps.evaluator.rules`` so an out-of-range document
already in the store never prevents the rest of a collection from loading.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EntityT = TypeVar("EntityT", bound="Entity")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Role(str, Enum):
    """Responsibility tag a student may hold inside their group."""

    TEAM_LEADER = "team-leader"
    TIME_KEEPER = "time-keeper"
    REPORTER = "reporter"
    RESOURCE_MANAGER = "resource-manager"
    PEACE_MAKER = "peace-maker"

    @property
    def label(self) -> str:
        return ROLE_LABELS[self][0]

    @property
    def local_label(self) -> str:
        return ROLE_LABELS[self][1]

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Resolve a role key, English label, or Bengali label; anything else is no role."""
        if isinstance(value, Role):
            return value
        text = str(value or "").strip()
        if not text:
            return None
        for role in cls:
            if text.lower() in (role.value, role.label.lower()) or text == role.local_label:
                return role
        return None


ROLE_LABELS: Dict[Role, tuple[str, str]] = {
    Role.TEAM_LEADER: ("Team Leader", "টিম লিডার"),
    Role.TIME_KEEPER: ("Time Keeper", "টাইম কিপার"),
    Role.REPORTER: ("Reporter", "রিপোর্টার"),
    Role.RESOURCE_MANAGER: ("Resource Manager", "রিসোর্স ম্যানেজার"),
    Role.PEACE_MAKER: ("Peace Maker", "পিস মেকার"),
}


class ScoringOption(str, Enum):
    """Fixed bonus/penalty a grader can tick per student per evaluation."""

    CANNOT_DO = "cannot_do"
    LEARNED_CANNOT_WRITE = "learned_cannot_write"
    LEARNED_CAN_WRITE = "learned_can_write"
    WEEKLY_HOMEWORK = "weekly_homework"
    WEEKLY_ATTENDANCE = "weekly_attendance"

    @property
    def marks(self) -> int:
        return _OPTION_MARKS[self]

    @property
    def label(self) -> str:
        return _OPTION_LABELS[self]

    @classmethod
    def lookup(cls, option_id: Any) -> Optional["ScoringOption"]:
        try:
            return cls(option_id)
        except ValueError:
            return None


_OPTION_MARKS: Dict[ScoringOption, int] = {
    ScoringOption.CANNOT_DO: -5,
    ScoringOption.LEARNED_CANNOT_WRITE: 5,
    ScoringOption.LEARNED_CAN_WRITE: 10,
    ScoringOption.WEEKLY_HOMEWORK: 15,
    ScoringOption.WEEKLY_ATTENDANCE: 5,
}

_OPTION_LABELS: Dict[ScoringOption, str] = {
    ScoringOption.CANNOT_DO: "I cannot do this topic yet",
    ScoringOption.LEARNED_CANNOT_WRITE: "I understood this topic but have not learned it well",
    ScoringOption.LEARNED_CAN_WRITE: "I understood and learned this topic well",
    ScoringOption.WEEKLY_HOMEWORK: "I did homework every day this week",
    ScoringOption.WEEKLY_ATTENDANCE: "I attended every day this week",
}


class Entity(BaseModel):
    """Base for stored records; ``id`` is the document key, never a stored field."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = ""
    created_at: Optional[str] = None

    @classmethod
    def from_record(cls: Type[EntityT], record: Mapping[str, Any]) -> EntityT:
        return cls.model_validate(dict(record))

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready mapping including ``id``; this is what the cache holds."""
        return self.model_dump(mode="json", by_alias=True)

    def to_document(self) -> Dict[str, Any]:
        """Fields to persist; the id lives in the document key."""
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})


class Group(Entity):
    name: str


class Student(Entity):
    name: str
    roll: str
    gender: str = ""
    group_id: Optional[str] = None
    contact: str = ""
    academic_group: str = ""
    session: str = ""
    role: Optional[Role] = None

    @field_validator("roll", "contact", "gender", "academic_group", "session", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("group_id", mode="before")
    @classmethod
    def _blank_group_is_none(cls, value: Any) -> Optional[str]:
        text = "" if value is None else str(value).strip()
        return text or None

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> Optional[Role]:
        return Role.parse(value)


class Task(Entity):
    name: str
    description: str = ""
    max_score: int = 100
    date: str = ""


class OptionMark(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    selected: bool = False
    option_id: str = ""


class StudentScore(BaseModel):
    """One student's marks inside an evaluation; missing numbers count as 0."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    task_score: float = 0
    teamwork_score: float = 0
    comments: str = ""
    option_marks: Dict[str, OptionMark] = Field(default_factory=dict)

    @field_validator("task_score", "teamwork_score", mode="before")
    @classmethod
    def _missing_is_zero(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value

    @field_validator("comments", mode="before")
    @classmethod
    def _comments_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("option_marks", mode="before")
    @classmethod
    def _fill_option_ids(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return {}
        filled: Dict[str, Any] = {}
        for key, mark in value.items():
            if isinstance(mark, Mapping) and not mark.get("optionId") and not mark.get("option_id"):
                mark = {**mark, "optionId": key}
            filled[key] = mark
        return filled

    def selected_options(self) -> list[str]:
        return [mark.option_id for mark in self.option_marks.values() if mark.selected]


class Evaluation(Entity):
    task_id: str
    group_id: str
    scores: Dict[str, StudentScore] = Field(default_factory=dict)
    updated_at: Optional[str] = None

    @field_validator("scores", mode="before")
    @classmethod
    def _null_scores(cls, value: Any) -> Any:
        return value or {}


AdminType = Literal["admin", "super-admin"]
Permission = Literal["read", "write", "delete"]


class AdminPermissions(BaseModel):
    read: bool = True
    write: bool = False
    delete: bool = False


class Admin(Entity):
    email: str = ""
    type: AdminType = "admin"
    permissions: AdminPermissions = Field(default_factory=AdminPermissions)

    @property
    def is_super_admin(self) -> bool:
        return self.type == "super-admin"

    def has_permission(self, permission: Permission) -> bool:
        if self.is_super_admin:
            return True
        return bool(getattr(self.permissions, permission, False))


__all__ = [
    "Admin",
    "AdminPermissions",
    "AdminType",
    "Entity",
    "Evaluation",
    "Group",
    "OptionMark",
    "Permission",
    "ROLE_LABELS",
    "Role",
    "ScoringOption",
    "Student",
    "StudentScore",
    "Task",
    "utc_now_iso",
]
