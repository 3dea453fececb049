from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import combattracker.db.init_db as db_init
import combattracker.db.session as db_session
from combattracker.api.main import app
from combattracker.config import Settings
from combattracker.core.engine.state import new_encounter
from combattracker.core.persistence.encounter_store import dump_state_json
from combattracker.db.base import Base
from combattracker.db.deps import get_db
from combattracker.db.models import CombatantTemplate, Encounter


@pytest.fixture(scope="session")
def engine():
    # SQLite in-memory, один коннект на всю сессию (StaticPool)
    return create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )


@pytest.fixture(scope="session")
def TestingSessionLocal(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="session", autouse=True)
def _patch_db(engine, TestingSessionLocal):
    # init_db в lifespan и SqlEncounterStore без фабрики смотрят сюда
    db_session.engine = engine
    db_session.SessionLocal = TestingSessionLocal
    db_init.engine = engine

    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_tables(TestingSessionLocal):
    yield
    with TestingSessionLocal() as db:
        db.execute(delete(Encounter))
        db.execute(delete(CombatantTemplate))
        db.commit()


@pytest.fixture()
def db(TestingSessionLocal):
    with TestingSessionLocal() as session:
        yield session


@pytest.fixture()
def encounter_row(db):
    row = Encounter(name="Goblin Ambush", state_json=dump_state_json(new_encounter()))
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture()
def fast_settings():
    # без debounce-паузы, чтобы flush() не ждал
    return Settings(save_debounce_seconds=0.0)


@pytest.fixture()
def client(TestingSessionLocal):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
