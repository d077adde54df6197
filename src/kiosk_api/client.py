"""
Kiosk-side HTTP client for the backend.

Supplies the pieces SessionEngine needs on a kiosk: a PIN verifier, a remote
sign-out and an audit sink. Actor headers identify the logged-in employee
to the backend for audit purposes.
"""

import logging
from typing import Any, Dict, Optional, Union

import requests

from .audit import AuditEvent
from .errors import AuditLogFailure, InvalidCredential, RemoteSignOutFailure
from .identity import Identity

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


def actor_headers(identity: Optional[Identity]) -> Dict[str, str]:
    headers = {}
    if identity is None:
        return headers
    headers["x-employee-id"] = str(identity.id)
    if identity.name:
        headers["x-employee-name"] = identity.name
    if identity.department:
        headers["x-employee-department-name"] = identity.department
    return headers


# PUBLIC_INTERFACE
class KioskApiClient:
    """Thin wrapper over the kiosk backend's auth and auto-exit endpoints."""

    def __init__(self, base_url: str, *, admin_console: bool = False, http=None, timeout=DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.admin_console = admin_console
        self._http = http or requests.Session()
        self._timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    # PUBLIC_INTERFACE
    def verify_pin(self, pin: str) -> Identity:
        """
        Raises:
            InvalidCredential: the backend rejected the PIN.
            requests.RequestException: the backend could not be reached.
        """
        resp = self._http.post(
            self._url("/api/auth/pin-login"),
            json={"pin": pin, "admin_console": self.admin_console},
            timeout=self._timeout,
        )
        if resp.status_code in (400, 401, 422):
            raise InvalidCredential()
        resp.raise_for_status()
        return Identity.model_validate(resp.json()["identity"])

    # PUBLIC_INTERFACE
    def sign_out(self, identity: Identity) -> None:
        try:
            resp = self._http.post(
                self._url("/api/auth/logout"),
                headers=actor_headers(identity),
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise RemoteSignOutFailure(str(e)) from e

    # PUBLIC_INTERFACE
    def post_event(self, payload: Dict[str, Any]) -> None:
        """
        Sends one audit event to /api/logs.

        Raises:
            AuditLogFailure: the backend could not be reached or rejected it.
        """
        try:
            resp = self._http.post(self._url("/api/logs"), json=payload, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise AuditLogFailure(str(e)) from e

    # PUBLIC_INTERFACE
    def close_todays_open_visits(self, identity: Optional[Identity] = None) -> int:
        """Asks the backend to run the daily auto-exit for today. Returns visits closed."""
        resp = self._http.post(
            self._url("/api/visits/auto-exit"),
            headers=actor_headers(identity),
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return int(resp.json().get("count", 0))


# PUBLIC_INTERFACE
class HttpAuditSink:
    """Posts audit events to /api/logs. Never raises, never retries."""

    def __init__(self, client: KioskApiClient):
        self._client = client

    # PUBLIC_INTERFACE
    def log_event(self, event: Union[AuditEvent, Dict[str, Any]]) -> None:
        payload = event.model_dump(mode="json") if isinstance(event, AuditEvent) else dict(event)
        try:
            self._client.post_event(payload)
        except AuditLogFailure as e:
            logger.warning("Dropping audit event %s: %s", payload.get("event_type"), e)
