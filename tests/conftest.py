import os
import uuid

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "100000/minute"
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from armory.auth.security import create_access_token, get_password_hash
from armory.db import Base, get_db
from armory.main import app
from armory.models.models import User
from armory.services import pool_service


PC = "Police Constable (PC)"
HC = "Head Constable (HC)"
SP = "Superintendent of Police (SP)"


def make_user(role="officer", designation=PC, name="Officer", station="Central Station") -> User:
    suffix = uuid.uuid4().hex[:8]
    return User(
        id=uuid.uuid4(),
        officer_id=f"IN{suffix.upper()}",
        full_name=name,
        email=f"{suffix}@police.example.org",
        password_hash=get_password_hash("secret"),
        designation=designation,
        role=role,
        police_station=station,
        is_active=True,
    )


def make_pool(name="Glock-17", quantity=3, prefix="GLK", designations=(PC, HC)):
    return pool_service.build_pool(
        pool_name=name,
        category="Firearm",
        model="Glock 17 Gen5",
        manufacturer="Glock",
        total_quantity=quantity,
        prefix=prefix,
        authorized_designations=list(designations),
        location="Main Armory",
        added_by=None,
    )


@pytest.fixture()
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


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def admin(db):
    user = make_user(role="admin", designation=SP, name="Armory Admin")
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def officer(db):
    user = make_user(name="Officer A")
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def other_officer(db):
    user = make_user(name="Officer B")
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def pool(db):
    pool = make_pool()
    db.add(pool)
    db.commit()
    return pool


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), roles=[user.role])}"}
