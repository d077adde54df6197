import datetime
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Header, Request, BackgroundTasks
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN, HTTP_404_NOT_FOUND, HTTP_409_CONFLICT

from .audit import DatabaseAuditSink
from .auth import hash_pin, verify_pin
from .auto_exit import close_todays_open_visits, sweep_open_visits
from .config import configure_logging, get_settings, settings as app_settings
from .database import SessionLocal, get_db
from .errors import AuditLogFailure, AutoExitUpdateFailure, InvalidCredential
from .identity import Identity, Role, policy_for
from .models import Badge, Department, Employee, Visit
from .scheduler import create_sweep_scheduler

configure_logging(app_settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if app_settings.auto_exit_schedule_enabled:
        scheduler = create_sweep_scheduler(app_settings, SessionLocal)
        scheduler.start()
        logger.info("Auto-exit sweep scheduled daily at %02d:%02d %s",
                    app_settings.auto_exit_schedule_hour, app_settings.auto_exit_schedule_minute,
                    app_settings.facility_timezone)
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(
    title="Visitor Kiosk Backend",
    description="API for the visitor registration kiosk and admin console: PIN login, session policy, visit admission/checkout, daily auto-exit and audit logging.",
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "auth", "description": "PIN login and logout"},
        {"name": "visits", "description": "Visit admission, checkout and daily auto-exit"},
        {"name": "cron", "description": "Scheduled jobs"},
        {"name": "logs", "description": "Audit event ingestion"},
        {"name": "admin", "description": "Admin management & reports"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[app_settings.frontend_url],  # Restrict to frontend origin for security
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# PUBLIC_INTERFACE
def get_audit_sink():
    """FastAPI dependency: audit sink writing to event_logs."""
    return DatabaseAuditSink(SessionLocal)


class Actor(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    department_name: Optional[str] = None

    def as_audit_actor(self):
        return {"type": "employee" if self.id else "anonymous", "id": self.id, "name": self.name,
                "department_name": self.department_name}


# PUBLIC_INTERFACE
def get_actor(
    x_employee_id: Optional[str] = Header(None),
    x_employee_name: Optional[str] = Header(None),
    x_employee_department_name: Optional[str] = Header(None),
):
    """Reads the calling employee from the actor headers sent by the kiosk."""
    return Actor(id=x_employee_id, name=x_employee_name, department_name=x_employee_department_name)


def _client_ip(request: Request) -> Optional[str]:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
        if ip:
            return ip
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)

# -------------------- Pydantic Schemas --------------------

class PinLoginRequest(BaseModel):
    pin: str = Field(..., description="4-digit PIN")
    admin_console: bool = Field(False, description="True when logging in to the admin console")


class PinLoginResponse(BaseModel):
    identity: Identity
    expires_at: datetime.datetime
    idle_timeout_seconds: Optional[int] = None
    warning_lead_seconds: Optional[int] = None


class AutoExitResponse(BaseModel):
    success: bool = True
    message: str
    count: int
    timestamp: datetime.datetime


class VisitCreatePayload(BaseModel):
    visitor_name: str = Field(..., min_length=1)
    badge_id: int
    purpose_id: Optional[int] = None
    notes: Optional[str] = None
    signature: Optional[str] = None


class VisitOut(BaseModel):
    id: int
    visitor_name: str
    employee_id: int
    exit_employee_id: Optional[int]
    badge_id: int
    purpose_id: Optional[int]
    notes: Optional[str]
    entry_time: datetime.datetime
    exit_time: Optional[datetime.datetime]
    is_system_exit: bool

    class Config:
        from_attributes = True


class EmployeeUpsertPayload(BaseModel):
    id: Optional[int] = None
    name: str = Field(..., min_length=1)
    role: Role = Role.USER
    department_id: Optional[int] = None
    is_active: bool = True
    pin: Optional[str] = Field(None, pattern=r"^\d{4}$")


class EmployeeOut(BaseModel):
    id: int
    name: str
    role: str
    department_id: Optional[int]
    is_active: bool

    class Config:
        from_attributes = True

# -------------------- Health Check --------------------

# PUBLIC_INTERFACE
@app.get("/", tags=["admin"])
def health_check():
    """
    Health check endpoint.
    ---
    Returns {"message": "Healthy"} if API is up.
    """
    return {"message": "Healthy"}


# PUBLIC_INTERFACE
@app.get("/api/health/db", tags=["admin"])
def database_health(db: Session = Depends(get_db)):
    """
    Database reachability probe. 200 when a trivial query succeeds, 502 otherwise.
    """
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Database health check failed: %s", e)
        return JSONResponse({"ok": False, "error": e.__class__.__name__}, status_code=502)
    return {"ok": True}

# -------------------- Auth --------------------

# PUBLIC_INTERFACE
@app.post("/api/auth/pin-login", response_model=PinLoginResponse, tags=["auth"])
def pin_login(
    payload: PinLoginRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    audit_sink=Depends(get_audit_sink),
):
    """
    Exchanges a PIN for an identity and the session expiry the client should enforce.
    Unknown PINs and disabled accounts both return 401 with the same message.
    """
    try:
        identity = verify_pin(db, payload.pin)
    except InvalidCredential:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Invalid PIN")

    policy = policy_for(identity.role, payload.admin_console)
    expires_at = datetime.datetime.now(datetime.timezone.utc) + policy.duration
    background_tasks.add_task(
        audit_sink.log_event,
        {
            "event_type": "auth.pin_verified",
            "level": "audit",
            "action": "pin_verified",
            "actor": {"type": "employee", "id": identity.id, "name": identity.name,
                      "department_name": identity.department},
            "source": "server",
            "context": {"admin_console": payload.admin_console},
        },
        _client_ip(request),
        request.headers.get("user-agent"),
    )
    return PinLoginResponse(
        identity=identity,
        expires_at=expires_at,
        idle_timeout_seconds=int(policy.idle_timeout.total_seconds()) if policy.idle_timeout else None,
        warning_lead_seconds=int(policy.warning_lead.total_seconds()) if policy.warning_lead else None,
    )


# PUBLIC_INTERFACE
@app.post("/api/auth/logout", tags=["auth"])
def logout(
    request: Request,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    audit_sink=Depends(get_audit_sink),
):
    """
    Records a logout. Always succeeds; the client has already dropped its session.
    """
    background_tasks.add_task(
        audit_sink.log_event,
        {"event_type": "auth.sign_out", "level": "audit", "action": "sign_out",
         "actor": actor.as_audit_actor(), "source": "server"},
        _client_ip(request),
        request.headers.get("user-agent"),
    )
    return {"ok": True}

# -------------------- Auto-exit --------------------

def _check_cron_secret(authorization: Optional[str], cron_secret: Optional[str]):
    if cron_secret and authorization != f"Bearer {cron_secret}":
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Unauthorized")


# PUBLIC_INTERFACE
@app.api_route("/api/cron/auto-exit", methods=["GET", "POST"], response_model=AutoExitResponse, tags=["cron"])
def cron_auto_exit(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    audit_sink=Depends(get_audit_sink),
):
    """
    Closes every open visit on its entry day and flags it as a system exit.
    Requires "Authorization: Bearer <CRON_SECRET>" only when CRON_SECRET is set.
    Safe to call repeatedly; a second run finds nothing to close.
    """
    _check_cron_secret(authorization, settings.cron_secret)
    try:
        result = sweep_open_visits(db, settings.sweep_exit_hour_utc, audit_sink=audit_sink)
    except AutoExitUpdateFailure as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)

    message = f"Auto-exited {result.count} visits." if result.count else "No active visits to exit."
    return AutoExitResponse(message=message, count=result.count, timestamp=result.timestamp)


# PUBLIC_INTERFACE
@app.post("/api/visits/auto-exit", response_model=AutoExitResponse, tags=["visits"])
def daily_auto_exit(
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    audit_sink=Depends(get_audit_sink),
):
    """
    Kiosk-side daily trigger: after the local cutoff hour, closes today's
    still-open visits at the cutoff. A no-op before the cutoff.
    """
    try:
        closed = close_todays_open_visits(
            db,
            settings.facility_timezone,
            settings.auto_exit_cutoff_hour,
            audit_sink=audit_sink,
        )
    except AutoExitUpdateFailure as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)
    return AutoExitResponse(
        message=f"Closed {closed} visits." if closed else "Nothing to close.",
        count=closed,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )

# -------------------- Visits --------------------

def _require_actor_employee(actor: Actor, db: Session) -> Employee:
    if not actor.id or not actor.id.isdigit():
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing employee")
    employee = db.get(Employee, int(actor.id))
    if employee is None or not employee.is_active:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Unknown employee")
    return employee


def _require_admin(actor: Actor, db: Session) -> Employee:
    employee = _require_actor_employee(actor, db)
    if employee.role not in (Role.ADMIN, Role.DEPARTMENT_ADMIN):
        raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Admin role required")
    return employee


# PUBLIC_INTERFACE
@app.post("/api/visits", response_model=VisitOut, tags=["visits"])
def admit_visitor(payload: VisitCreatePayload, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    """
    Admits a visitor: creates an open visit under the calling employee.
    The badge must be active and not already handed out.
    """
    employee = _require_actor_employee(actor, db)
    badge = db.get(Badge, payload.badge_id)
    if badge is None or not badge.is_active:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Badge not found")
    in_use = db.query(Visit).filter(Visit.badge_id == badge.id, Visit.exit_time.is_(None)).first()
    if in_use:
        raise HTTPException(status_code=HTTP_409_CONFLICT, detail="Badge already in use")

    visit = Visit(
        visitor_name=payload.visitor_name,
        employee_id=employee.id,
        badge_id=badge.id,
        purpose_id=payload.purpose_id,
        notes=payload.notes,
        signature=payload.signature,
        entry_time=datetime.datetime.now(datetime.timezone.utc),
        is_system_exit=False,
    )
    db.add(visit)
    db.commit()
    db.refresh(visit)
    return visit


# PUBLIC_INTERFACE
@app.post("/api/visits/{visit_id}/checkout", response_model=VisitOut, tags=["visits"])
def checkout_visitor(visit_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    """
    Human checkout. Sets exit_time to now; 409 if the visit is already closed.
    """
    employee = _require_actor_employee(actor, db)
    closed = (
        db.query(Visit)
        .filter(Visit.id == visit_id, Visit.exit_time.is_(None))
        .update(
            {
                Visit.exit_time: datetime.datetime.now(datetime.timezone.utc),
                Visit.exit_employee_id: employee.id,
                Visit.is_system_exit: False,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    visit = db.get(Visit, visit_id)
    if visit is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Visit not found")
    if not closed:
        raise HTTPException(status_code=HTTP_409_CONFLICT, detail="Visit already closed")
    db.refresh(visit)
    return visit


# PUBLIC_INTERFACE
@app.get("/api/visits/active", response_model=List[VisitOut], tags=["visits"])
def get_active_visits(department: Optional[str] = None, db: Session = Depends(get_db)):
    """
    Open visits, newest first, optionally limited to one department's employees.
    """
    query = db.query(Visit).filter(Visit.exit_time.is_(None))
    if department:
        query = query.join(Employee, Visit.employee_id == Employee.id).join(Department).filter(
            Department.name == department
        )
    return query.order_by(Visit.entry_time.desc()).all()

# -------------------- Admin Dashboard Endpoints --------------------

# PUBLIC_INTERFACE
@app.get("/api/admin/visits", response_model=List[VisitOut], tags=["admin"])
def get_visit_history(
    system_exit: Optional[bool] = None,
    skip: int = 0,
    limit: int = 25,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """
    Visit history (most recent first, paginated). Admin-like callers only.
    system_exit=true lists only visits closed by the auto-exit.
    """
    _require_admin(actor, db)
    query = db.query(Visit)
    if system_exit is not None:
        query = query.filter(Visit.is_system_exit == system_exit)
    return query.order_by(Visit.entry_time.desc()).offset(skip).limit(limit).all()


# PUBLIC_INTERFACE
@app.post("/api/admin/employees", response_model=EmployeeOut, tags=["admin"])
def upsert_employee(
    payload: EmployeeUpsertPayload,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
):
    """
    Creates or updates an employee. A supplied PIN replaces the stored hash.
    Admin-like callers only: 401 without a known caller, 403 for plain users.
    """
    _require_admin(actor, db)
    if payload.id is not None:
        employee = db.get(Employee, payload.id)
        if employee is None:
            raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Employee not found")
    else:
        employee = Employee()
        db.add(employee)
    employee.name = payload.name
    employee.role = payload.role.value
    employee.department_id = payload.department_id
    employee.is_active = payload.is_active
    if payload.pin:
        employee.pin_hash = hash_pin(payload.pin, rounds=settings.bcrypt_rounds)
    db.commit()
    db.refresh(employee)
    return employee

# -------------------- Audit Log Ingestion --------------------

# PUBLIC_INTERFACE
@app.post("/api/logs", tags=["logs"])
async def ingest_log(request: Request, audit_sink=Depends(get_audit_sink)):
    """
    Accepts one structured audit event from a kiosk or console.
    400 for a body that is not a JSON object or has no event_type.
    The database insert runs in the threadpool, off the event loop.
    """
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"ok": False, "error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"ok": False, "error": "Invalid JSON body"}, status_code=400)
    try:
        await run_in_threadpool(audit_sink.record, body, _client_ip(request), request.headers.get("user-agent"))
    except ValueError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=400)
    except AuditLogFailure as e:
        logger.warning("Audit event not stored: %s", e)
        return JSONResponse({"ok": False, "error": "Audit event not stored"}, status_code=500)
    return {"ok": True}
