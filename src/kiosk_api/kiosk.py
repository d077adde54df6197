"""
Wiring for a kiosk or admin-console process: file-backed session slot,
backend client and session engine.
"""

import logging

import requests

from .client import HttpAuditSink, KioskApiClient
from .errors import AutoExitUpdateFailure
from .session_engine import SessionEngine
from .session_store import FileSessionStore

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def build_session_engine(settings, *, admin_console=False, scheduler=None, on_expired=None,
                         on_warning_tick=None, http=None, clock=None):
    """Returns (engine, client) ready for engine.start()."""
    client = KioskApiClient(settings.kiosk_api_url, admin_console=admin_console, http=http)
    clock_kwargs = {"clock": clock} if clock is not None else {}
    engine = SessionEngine(
        FileSessionStore(settings.kiosk_session_file, **clock_kwargs),
        client.verify_pin,
        admin_console=admin_console,
        scheduler=scheduler,
        audit_sink=HttpAuditSink(client),
        remote_sign_out=client.sign_out,
        on_expired=on_expired,
        on_warning_tick=on_warning_tick,
        **clock_kwargs,
    )
    return engine, client


# PUBLIC_INTERFACE
def on_authenticated_mount(engine, client):
    """
    Runs once per authenticated start of the kiosk view: triggers the
    daily auto-exit for today. Returns the number of visits closed, or 0
    when nobody is logged in or the backend call failed.
    """
    if engine.identity is None:
        return 0
    try:
        return client.close_todays_open_visits(engine.identity)
    except (requests.RequestException, AutoExitUpdateFailure) as e:
        logger.error("Daily auto-exit trigger failed: %s", e)
        return 0
