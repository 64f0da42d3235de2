from __future__ import annotations

from apps.evaluator.access import PAGE_RULES, Page, PageVisibility, check_page_access
from apps.evaluator.models import Admin, AdminPermissions

READER = Admin(id="r1", email="reader@example.org", permissions=AdminPermissions(read=True))
WRITER = Admin(id="w1", email="writer@example.org", permissions=AdminPermissions(read=True, write=True))
SUPER = Admin(id="root", email="root@example.org", type="super-admin", permissions=AdminPermissions(read=False))


def test_default_visibility() -> None:
    visibility = PageVisibility()
    public = {page for page in Page if visibility.is_public(page)}
    assert public == {
        Page.DASHBOARD,
        Page.ALL_STUDENTS,
        Page.GROUP_POLICY,
        Page.EXPORT,
        Page.STUDENT_RANKING,
        Page.GROUP_ANALYSIS,
    }
    assert set(PAGE_RULES) == set(Page)


def test_public_pages_need_no_sign_in() -> None:
    decision = check_page_access(Page.DASHBOARD, PageVisibility(), None)
    assert decision.allowed
    assert decision.reason == "public page"


def test_private_pages_require_sign_in_and_permission() -> None:
    visibility = PageVisibility()
    assert check_page_access(Page.GROUPS, visibility, None).reason == "sign-in required"
    assert check_page_access(Page.GROUPS, visibility, READER).allowed

    denied = check_page_access(Page.EVALUATION, visibility, READER)
    assert not denied.allowed
    assert denied.reason == "write permission required"
    assert check_page_access(Page.EVALUATION, visibility, WRITER).allowed


def test_admin_management_is_super_admin_only_even_when_flagged_public() -> None:
    visibility = PageVisibility.from_document({"admin-management": True})
    assert visibility.public[Page.ADMIN_MANAGEMENT] is False
    assert check_page_access(Page.ADMIN_MANAGEMENT, visibility, WRITER).reason == "super-admin only"
    assert check_page_access(Page.ADMIN_MANAGEMENT, visibility, SUPER).allowed


def test_super_admin_has_every_permission() -> None:
    assert SUPER.has_permission("delete")
    assert check_page_access(Page.TASKS, PageVisibility(), SUPER).allowed


def test_from_document_ignores_unknown_keys_and_keeps_defaults() -> None:
    visibility = PageVisibility.from_document({"tasks": True, "dashboard": False, "made-up": True})
    assert visibility.is_public(Page.TASKS)
    assert not visibility.is_public(Page.DASHBOARD)
    assert visibility.is_public(Page.EXPORT)
    document = visibility.to_document()
    assert "made-up" not in document
    assert document["tasks"] is True
    assert PageVisibility.from_document(None).to_document() == PageVisibility().to_document()
