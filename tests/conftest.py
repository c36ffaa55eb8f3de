import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import db
from main import app
from models import User
from routers.auth import create_session_token
from schemas import RequestCreate
from services import lifecycle
from services.chat import typing_tracker
from services.presence import hub


@pytest.fixture
def engine(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "engine", engine)
    hub.reset()
    typing_tracker.reset()
    yield engine
    hub.reset()
    typing_tracker.reset()
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(engine):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def make_user(session):
    def _make(name: str = "Ana", **kwargs) -> User:
        user = User(
            email=f"{name.lower()}@example.org",
            name=name,
            password_hash="unused",
            **kwargs,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_request(session):
    def _make(requester: User, **overrides):
        attrs = {
            "type": "food",
            "title": "Rice for 4 families",
            "description": "Evacuation centre ran out of rice",
            "coordinates": [121.0437, 14.6760],
            "urgency": "medium",
        }
        attrs.update(overrides)
        return lifecycle.create(session, requester, RequestCreate(**attrs))

    return _make


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user.id)}"}
