"""Shared fixtures: in-memory SQLite, a seeded company and fakes for external services"""
import os

# Settings are read at import time, point them at test values first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PUBLIC_BASE_URL"] = "https://api.bookflow.test"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["EVOLUTION_API_URL"] = "https://evolution.test"
os.environ["EVOLUTION_API_KEY"] = "evo-key"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import bookflow.models  # noqa: F401
from bookflow.api.dependencies import create_company_token
from bookflow.config.database import get_db
from bookflow.config.tenant import resolve_tenant_config
from bookflow.models.base import Base
from bookflow.models.company import Company, Plan
from bookflow.models.conversation import Conversation
from bookflow.models.professional import Professional
from bookflow.models.service import Service
from bookflow.models.whatsapp_instance import WhatsAppInstance
from bookflow.services.payment.mercadopago_client import MercadoPagoClient
from tests.fakes import FakeMercadoPagoSDK


# ---------------------------------------------------------------------------
# database
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def task_db(monkeypatch, session_factory):
    """Make tasks open their sessions on the test database"""
    def patch(module):
        monkeypatch.setattr(module, "get_db", lambda: iter([session_factory()]))
    return patch


# ---------------------------------------------------------------------------
# seed data
# ---------------------------------------------------------------------------

@pytest.fixture
def plan(db):
    plan = Plan(name="Profissional", price=Decimal("99.90"), max_professionals=3, permissions={})
    db.add(plan)
    db.commit()
    return plan


@pytest.fixture
def company(db, plan):
    company = Company(
        fantasy_name="Barbearia Central",
        email="contato@barbearia.com.br",
        plan_id=plan.id,
        mercadopago_enabled=True,
        mercadopago_access_token="TEST-token",
        timezone="America/Sao_Paulo",
    )
    company.set_password("SenhaForte123!")
    db.add(company)
    db.commit()
    return company


@pytest.fixture
def service(db, company):
    service = Service(company_id=company.id, name="Corte", duration=30, price=Decimal("50.00"))
    db.add(service)
    db.commit()
    return service


@pytest.fixture
def professional(db, company):
    professional = Professional(
        company_id=company.id,
        name="João",
        work_days=[0, 1, 2, 3, 4, 5, 6],
        work_start_time="09:00",
        work_end_time="18:00",
    )
    db.add(professional)
    db.commit()
    return professional


@pytest.fixture
def instance(db, company):
    instance = WhatsAppInstance(company_id=company.id, instance_name="barbearia-central", status="open")
    db.add(instance)
    db.commit()
    return instance


@pytest.fixture
def conversation(db, company, instance):
    conversation = Conversation(
        company_id=company.id,
        whatsapp_instance_id=instance.id,
        phone_number="5511999998888",
        contact_name="Maria",
        message_count=0,
    )
    db.add(conversation)
    db.commit()
    return conversation


@pytest.fixture
def config(company, instance):
    return resolve_tenant_config(company, instance)


@pytest.fixture
def booking_day():
    return date.today() + timedelta(days=7)


@pytest.fixture
def mp_sdk():
    return FakeMercadoPagoSDK()


@pytest.fixture
def mp_client(mp_sdk):
    return MercadoPagoClient("TEST-token", retry_attempts=3, backoff_seconds=1.0, sdk=mp_sdk, sleep=lambda s: None)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest.fixture
def client(session_factory):
    from bookflow.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(company):
    token = create_company_token(company.id)
    return {"Authorization": f"Bearer {token}"}
