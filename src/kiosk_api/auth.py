"""
PIN credential verification.

Staff authenticate with a 4-digit PIN. Only bcrypt hashes are stored, so a
lookup has to test the PIN against every hash. Every hash is always tested,
which keeps the amount of work independent of which record (if any) matched.
"""

import logging
import re

import bcrypt
from sqlalchemy.orm import Session, joinedload

from .errors import InvalidCredential
from .identity import Identity, Role
from .models import Employee

logger = logging.getLogger(__name__)

PIN_PATTERN = re.compile(r"^\d{4}$")

# Checked when there are no stored hashes at all.
_DUMMY_HASH = bcrypt.hashpw(b"0000", bcrypt.gensalt(rounds=4))


# PUBLIC_INTERFACE
def hash_pin(pin: str, rounds: int = 12) -> str:
    """
    Hashes a 4-digit PIN with bcrypt.

    Args:
        pin (str): Four decimal digits.
        rounds (int): bcrypt cost factor.

    Returns:
        str: The hash, suitable for Employee.pin_hash.
    """
    if not PIN_PATTERN.match(pin or ""):
        raise ValueError("PIN must be exactly 4 digits")
    return bcrypt.hashpw(pin.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def _pin_matches(pin: bytes, pin_hash: str) -> bool:
    try:
        return bcrypt.checkpw(pin, pin_hash.encode())
    except ValueError:
        logger.warning("Unreadable PIN hash in employee table")
        return False


# PUBLIC_INTERFACE
def verify_pin(db: Session, pin: str) -> Identity:
    """
    Exchanges a PIN for the identity of the matching, enabled employee.

    Raises:
        InvalidCredential: for a malformed PIN, an unknown PIN and a disabled
        account alike. The caller gets no hint which one it was.
    """
    candidates = (
        db.query(Employee)
        .options(joinedload(Employee.department))
        .filter(Employee.pin_hash.isnot(None))
        .all()
    )
    well_formed = bool(PIN_PATTERN.match(pin or ""))
    pin_bytes = (pin if well_formed else "").encode()

    match = None
    for employee in candidates:
        # Disabled accounts may share a PIN with an enabled one; they never match.
        if _pin_matches(pin_bytes, employee.pin_hash) and employee.is_active and match is None:
            match = employee
    if not candidates:
        bcrypt.checkpw(pin_bytes, _DUMMY_HASH)

    if not well_formed or match is None:
        logger.info("PIN login rejected")
        raise InvalidCredential()

    try:
        role = Role(match.role)
    except ValueError:
        logger.warning("Employee %s has unknown role %r", match.id, match.role)
        raise InvalidCredential()

    return Identity(
        id=match.id,
        name=match.name,
        role=role,
        department=match.department.name if match.department else None,
    )
