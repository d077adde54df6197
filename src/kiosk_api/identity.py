"""
Identity, session and session-policy types shared by the verifier,
the session store and the session engine.
"""

import datetime
import enum
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, Field

ADMIN_SESSION_DURATION = datetime.timedelta(hours=1)
KIOSK_SESSION_DURATION = datetime.timedelta(minutes=1)
IDLE_TIMEOUT = datetime.timedelta(minutes=1)
WARNING_LEAD = datetime.timedelta(minutes=2)


class Role(str, enum.Enum):
    USER = "user"
    DEPARTMENT_ADMIN = "department_admin"
    ADMIN = "admin"

    @property
    def is_admin_like(self) -> bool:
        return self in (Role.ADMIN, Role.DEPARTMENT_ADMIN)


# PUBLIC_INTERFACE
class Identity(BaseModel):
    """Who is logged in. Replaced wholesale on re-login, never mutated."""
    id: Union[int, str]
    name: str
    role: Role
    department: Optional[str] = None

    class Config:
        frozen = True


# PUBLIC_INTERFACE
class Session(BaseModel):
    """The single active session of a kiosk or console context."""
    identity: Identity
    expires_at: datetime.datetime = Field(..., alias="expiresAt")

    class Config:
        frozen = True
        populate_by_name = True

    def is_valid(self, now: datetime.datetime) -> bool:
        return self.expires_at > now


@dataclass(frozen=True)
class SessionPolicy:
    duration: datetime.timedelta
    idle_timeout: Optional[datetime.timedelta] = None
    warning_lead: Optional[datetime.timedelta] = None


# PUBLIC_INTERFACE
def policy_for(role: Role, admin_console: bool) -> SessionPolicy:
    """
    Derives session lifetimes from the role and the context.

    Admin-like roles get one hour and a two minute expiry warning.
    Plain users get one minute. Outside the admin console every session
    is additionally renewed on activity with a one minute idle timeout.
    """
    role = Role(role)
    duration = ADMIN_SESSION_DURATION if role.is_admin_like else KIOSK_SESSION_DURATION
    return SessionPolicy(
        duration=duration,
        idle_timeout=None if admin_console else IDLE_TIMEOUT,
        warning_lead=WARNING_LEAD if role.is_admin_like else None,
    )
