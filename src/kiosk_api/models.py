"""
SQLAlchemy ORM models for the visitor kiosk.
Entities: Department, Employee, Badge, VisitPurpose, Visit, EventLog.
"""

from sqlalchemy import (
    JSON,
    Column,
    String,
    Integer,
    DateTime,
    ForeignKey,
    func,
    Boolean,
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


# PUBLIC_INTERFACE
class Department(Base):
    """
    Department model.
    Groups employees; kiosk views are filtered by department.
    """
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)

    employees = relationship("Employee", back_populates="department")


# PUBLIC_INTERFACE
class Employee(Base):
    """
    Employee model.
    Front-desk staff and administrators; logs in with a 4-digit PIN.
    """
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="user")   # user, department_admin, admin
    pin_hash = Column(String, nullable=True)                 # bcrypt hash, never the PIN itself
    is_active = Column(Boolean, nullable=False, default=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)

    department = relationship("Department", back_populates="employees")


# PUBLIC_INTERFACE
class Badge(Base):
    """Visitor badge handed out at admission."""
    __tablename__ = "badges"

    id = Column(Integer, primary_key=True, index=True)
    badge_number = Column(String, nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)


# PUBLIC_INTERFACE
class VisitPurpose(Base):
    __tablename__ = "visit_purposes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)


# PUBLIC_INTERFACE
class Visit(Base):
    """
    Visit model.
    Open while exit_time is NULL. is_system_exit marks visits closed
    by the auto-exit trigger or sweep rather than by a person.
    """
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True, index=True)
    visitor_name = Column(String, nullable=False)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False)
    exit_employee_id = Column(Integer, ForeignKey("employees.id"), nullable=True)
    badge_id = Column(Integer, ForeignKey("badges.id"), nullable=False)
    purpose_id = Column(Integer, ForeignKey("visit_purposes.id"), nullable=True)
    notes = Column(String, nullable=True)
    signature = Column(String, nullable=True)
    entry_time = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    exit_time = Column(DateTime(timezone=True), nullable=True, index=True)
    is_system_exit = Column(Boolean, nullable=False, default=False)

    employee = relationship("Employee", foreign_keys=[employee_id])
    exit_employee = relationship("Employee", foreign_keys=[exit_employee_id])
    badge = relationship("Badge")
    purpose = relationship("VisitPurpose")


# PUBLIC_INTERFACE
class EventLog(Base):
    """
    EventLog model.
    Audit trail written by the audit sink (logins, logouts, auto-exits).
    """
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    event_type = Column(String, nullable=False, index=True)
    level = Column(String, nullable=False, default="info")
    action = Column(String, nullable=True)
    actor_type = Column(String, nullable=True)
    actor_id = Column(String, nullable=True)
    actor_name = Column(String, nullable=True)
    department_id = Column(Integer, nullable=True)
    department_name = Column(String, nullable=True)
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    source = Column(String, nullable=False, default="client")
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    correlation_id = Column(String, nullable=True)
    context = Column(JSON, nullable=True)
