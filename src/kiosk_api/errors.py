"""
Exception types raised by the session and auto-exit core.
None of them is fatal: each degrades to "log in again" or
"visit stays open until the next sweep".
"""


class KioskError(Exception):
    """Base class for kiosk core errors."""


class InvalidCredential(KioskError):
    """Unknown, disabled or malformed PIN. Callers cannot tell which."""

    def __init__(self, message="Invalid PIN"):
        super().__init__(message)


class StorageCorrupt(KioskError):
    """Persisted session payload could not be decoded."""


class RemoteSignOutFailure(KioskError):
    """Server-side sign-out failed; local state is cleared anyway."""


class AutoExitUpdateFailure(KioskError):
    """The bulk auto-exit update against the visit store failed."""


class AuditLogFailure(KioskError):
    """Writing an audit event failed. Always swallowed by the sinks."""
