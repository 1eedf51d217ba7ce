# bookflow/models/company.py
"""
Company (tenant) and subscription Plan models
Every domain row is scoped by company_id; plans carry the feature flags.
"""
from sqlalchemy import Column, String, Boolean, DateTime, JSON, Text, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from passlib.context import CryptContext

from bookflow.models.base import Base

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# Flags every plan exposes, in display order
PLAN_PERMISSIONS = (
    "dashboard",
    "appointments",
    "services",
    "professionals",
    "clients",
    "reviews",
    "tasks",
    "points_program",
    "loyalty",
    "inventory",
    "messages",
    "coupons",
    "financial",
    "reports",
    "settings",
)

DEFAULT_PLAN_PERMISSIONS = {
    "dashboard": True,
    "appointments": True,
    "services": True,
    "professionals": True,
    "clients": True,
    "reviews": False,
    "tasks": False,
    "points_program": False,
    "loyalty": False,
    "inventory": False,
    "messages": False,
    "coupons": False,
    "financial": False,
    "reports": False,
    "settings": True,
}


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    free_days = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(10, 2), nullable=False)
    max_professionals = Column(Integer, nullable=False, default=1)
    permissions = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    companies = relationship("Company", back_populates="plan")

    def resolved_permissions(self) -> dict:
        """Stored flags over the defaults; unknown keys are dropped"""
        stored = self.permissions or {}
        return {name: bool(stored.get(name, DEFAULT_PLAN_PERMISSIONS[name])) for name in PLAN_PERMISSIONS}

    def __repr__(self):
        return f"<Plan(id={self.id}, name={self.name})>"


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fantasy_name = Column(String(255), nullable=False)
    document = Column(String(20), nullable=True, unique=True)  # CNPJ or CPF
    email = Column(String(255), nullable=False, unique=True, index=True)
    hashed_password = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)

    # Extra instructions appended to the assistant prompt
    ai_agent_prompt = Column(Text, nullable=True)

    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)

    # Mercado Pago (per tenant credentials)
    mercadopago_enabled = Column(Boolean, nullable=False, default=False)
    mercadopago_access_token = Column(String(500), nullable=True)
    mercadopago_public_key = Column(String(255), nullable=True)

    timezone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    plan = relationship("Plan", back_populates="companies")

    def set_password(self, password: str) -> None:
        self.hashed_password = pwd_context.hash(password)

    def verify_password(self, password: str) -> bool:
        return pwd_context.verify(password, self.hashed_password)

    def __repr__(self):
        return f"<Company(id={self.id}, name={self.fantasy_name})>"

    def to_dict(self):
        return {
            "id": self.id,
            "fantasy_name": self.fantasy_name,
            "email": self.email,
            "phone": self.phone,
            "plan_id": self.plan_id,
            "mercadopago_enabled": bool(self.mercadopago_enabled),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
