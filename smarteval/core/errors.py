"""Error taxonomy for store failures, permissions, and sign-in problems."""

from __future__ import annotations

from typing import Dict, Literal

AuthAction = Literal["login", "register", "google"]

AUTH_ERROR_MESSAGES: Dict[str, str] = {
    "auth/user-not-found": "No account exists for this email.",
    "auth/wrong-password": "Incorrect password.",
    "auth/invalid-email": "The email address is not valid.",
    "auth/email-already-in-use": "This email is already in use.",
    "auth/weak-password": "The password is too weak.",
    "auth/too-many-requests": "Too many attempts. Please try again later.",
    "auth/network-request-failed": "Network connection failed.",
    "auth/popup-closed-by-user": "The sign-in popup was closed.",
}

_ACTION_LABELS: Dict[str, str] = {
    "login": "Login",
    "register": "Registration",
    "google": "Google sign-in",
}


class DocumentNotFound(LookupError):
    """Raised by a document store when an update targets a missing document."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} does not exist")


class RemoteStoreError(RuntimeError):
    """A document-store call failed. ``user_message`` is safe to show as-is."""

    def __init__(self, action: str, detail: str, *, collection: str | None = None) -> None:
        self.action = action
        self.detail = detail
        self.collection = collection
        super().__init__(self.user_message)

    @property
    def user_message(self) -> str:
        return f"{self.action} failed: {self.detail}"


class PermissionDenied(PermissionError):
    """The acting admin lacks the rights for an operation."""


def friendly_auth_error(code: str | None, message: str = "", action: AuthAction = "login") -> str:
    """Map a sign-in failure code to a user-facing message."""

    if code and code in AUTH_ERROR_MESSAGES:
        return AUTH_ERROR_MESSAGES[code]
    label = _ACTION_LABELS.get(action, "Operation")
    return f"{label} failed: {message}" if message else f"{label} failed"


__all__ = [
    "AUTH_ERROR_MESSAGES",
    "DocumentNotFound",
    "PermissionDenied",
    "RemoteStoreError",
    "friendly_auth_error",
]
