import datetime as dt

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import Session

from poolcare import config
from poolcare.database import Database, get_db
from poolcare.domain.plans.router import get_plan_service
from poolcare.domain.plans.schemas import PlanCreate
from poolcare.domain.plans.service import PlanService
from poolcare.main import create_app

# A Monday
TODAY = dt.date(2024, 1, 1)


def make_token(sub="user-1", org_id="org-1", role="ADMIN", **extra):
    claims = {"sub": sub, "org_id": org_id, "role": role, **extra}
    claims = {key: value for key, value in claims.items() if value is not None}
    return jwt.encode(claims, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def make_plan(**overrides) -> PlanCreate:
    data = {
        "poolId": "pool-1",
        "frequency": "weekly",
        "dow": "mon",
        "window": {"start": "08:00", "end": "10:00"},
        "priceCents": 10000,
    }
    data.update(overrides)
    return PlanCreate(**data)


@pytest.fixture
def database():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def service(db):
    return PlanService(db, today=lambda: TODAY)


@pytest.fixture
def client(database):
    app = create_app(database)

    def plan_service_override(db: Session = Depends(get_db)) -> PlanService:
        return PlanService(db, today=lambda: TODAY)

    app.dependency_overrides[get_plan_service] = plan_service_override
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    def _headers(**claims):
        return {"Authorization": f"Bearer {make_token(**claims)}"}

    return _headers
