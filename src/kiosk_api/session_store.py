"""
Persisted session slot.

One named slot holds {"identity": {...}, "expiresAt": "<ISO-8601>"}. Reading
it never raises: a missing, corrupt or expired payload simply means nobody
is logged in, and anything unusable is removed on the spot.
"""

import datetime
import json
import logging
import os
import tempfile
from typing import Callable, Optional

from pydantic import ValidationError

from .errors import StorageCorrupt
from .identity import Session
from .tz_clock import as_utc

logger = logging.getLogger(__name__)

SESSION_SLOT = "kiosk_auth"


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def encode_session(session: Session) -> str:
    return json.dumps(session.model_dump(mode="json", by_alias=True))


def decode_session(raw: str) -> Session:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise StorageCorrupt(f"not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise StorageCorrupt("payload is not an object")
    if "expiresAt" not in payload:
        raise StorageCorrupt("payload has no expiresAt")
    try:
        session = Session.model_validate(payload)
    except ValidationError as e:
        raise StorageCorrupt(str(e)) from e
    return session.model_copy(update={"expires_at": as_utc(session.expires_at)})


class SessionStore:
    """
    Base class: subclasses provide raw slot access, this class provides
    the load/save/clear contract.
    """

    def __init__(self, clock: Callable[[], datetime.datetime] = _utcnow):
        self._clock = clock

    def _read(self) -> Optional[str]:
        raise NotImplementedError

    def _write(self, raw: str) -> None:
        raise NotImplementedError

    def _delete(self) -> None:
        raise NotImplementedError

    # PUBLIC_INTERFACE
    def load(self) -> Optional[Session]:
        """Returns the stored session, or None when absent, corrupt or expired."""
        raw = self._read()
        if raw is None:
            return None
        try:
            session = decode_session(raw)
        except StorageCorrupt as e:
            logger.debug("Discarding corrupt session payload: %s", e)
            self.clear()
            return None
        if not session.is_valid(self._clock()):
            logger.debug("Discarding expired session for %s", session.identity.id)
            self.clear()
            return None
        return session

    # PUBLIC_INTERFACE
    def save(self, session: Session) -> None:
        self._write(encode_session(session))

    # PUBLIC_INTERFACE
    def clear(self) -> None:
        self._delete()


# PUBLIC_INTERFACE
class MemorySessionStore(SessionStore):
    """Keeps the serialized slot in memory."""

    def __init__(self, clock: Callable[[], datetime.datetime] = _utcnow):
        super().__init__(clock)
        self.raw: Optional[str] = None

    def _read(self):
        return self.raw

    def _write(self, raw):
        self.raw = raw

    def _delete(self):
        self.raw = None


# PUBLIC_INTERFACE
class FileSessionStore(SessionStore):
    """
    Keeps the slot in a JSON file so a session survives a kiosk restart.
    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so readers see either the old or the new payload.
    """

    def __init__(self, path: str, clock: Callable[[], datetime.datetime] = _utcnow):
        super().__init__(clock)
        self.path = path

    def _read(self):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Session file unreadable: %s", e)
            return ""

    def _write(self, raw):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".session.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(raw)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _delete(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
