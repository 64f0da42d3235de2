"""Page visibility and access checks for the presentation shell."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

from .models import Admin, Permission


class Page(str, Enum):
    DASHBOARD = "dashboard"
    GROUPS = "groups"
    MEMBERS = "members"
    GROUP_MEMBERS = "group-members"
    ALL_STUDENTS = "all-students"
    STUDENT_RANKING = "student-ranking"
    GROUP_ANALYSIS = "group-analysis"
    TASKS = "tasks"
    EVALUATION = "evaluation"
    GROUP_POLICY = "group-policy"
    EXPORT = "export"
    ADMIN_MANAGEMENT = "admin-management"


@dataclass(frozen=True)
class PageRule:
    default_public: bool
    min_permission: Permission = "read"
    super_admin_only: bool = False


PAGE_RULES: Dict[Page, PageRule] = {
    Page.DASHBOARD: PageRule(default_public=True),
    Page.ALL_STUDENTS: PageRule(default_public=True),
    Page.GROUP_POLICY: PageRule(default_public=True),
    Page.EXPORT: PageRule(default_public=True),
    Page.STUDENT_RANKING: PageRule(default_public=True),
    Page.GROUP_ANALYSIS: PageRule(default_public=True),
    Page.GROUPS: PageRule(default_public=False),
    Page.MEMBERS: PageRule(default_public=False),
    Page.GROUP_MEMBERS: PageRule(default_public=False),
    Page.TASKS: PageRule(default_public=False),
    Page.EVALUATION: PageRule(default_public=False, min_permission="write"),
    Page.ADMIN_MANAGEMENT: PageRule(default_public=False, super_admin_only=True),
}


class PageVisibility(BaseModel):
    """Public/private flag per page, stored as the ``settings/pageVisibility`` document."""

    public: Dict[Page, bool] = Field(
        default_factory=lambda: {page: rule.default_public for page, rule in PAGE_RULES.items()}
    )

    @classmethod
    def from_document(cls, data: Optional[Mapping[str, Any]]) -> "PageVisibility":
        """Unknown keys are ignored; pages missing from ``data`` keep their defaults."""
        visibility = cls()
        for key, value in (data or {}).items():
            try:
                page = Page(key)
            except ValueError:
                continue
            visibility.public[page] = bool(value)
        visibility.public[Page.ADMIN_MANAGEMENT] = False
        return visibility

    def to_document(self) -> Dict[str, bool]:
        return {page.value: flag for page, flag in self.public.items()}

    def is_public(self, page: Page) -> bool:
        if PAGE_RULES[page].super_admin_only:
            return False
        return self.public.get(page, PAGE_RULES[page].default_public)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = ""


def check_page_access(page: Page, visibility: PageVisibility, admin: Optional[Admin]) -> AccessDecision:
    rule = PAGE_RULES[page]
    if visibility.is_public(page):
        return AccessDecision(True, "public page")
    if admin is None:
        return AccessDecision(False, "sign-in required")
    if rule.super_admin_only and not admin.is_super_admin:
        return AccessDecision(False, "super-admin only")
    if not admin.has_permission(rule.min_permission):
        return AccessDecision(False, f"{rule.min_permission} permission required")
    return AccessDecision(True, "signed-in admin")


__all__ = ["AccessDecision", "PAGE_RULES", "Page", "PageRule", "PageVisibility", "check_page_access"]
