from __future__ import annotations

import os

# Lifespan hooks call init_db(); keep them off the real data directory
os.environ.setdefault("ACCORD_DATABASE_URL", "sqlite://")

from datetime import date

import pytest
from sqlalchemy.orm import Session, sessionmaker

from accord import services
from accord.db import build_engine
from accord.models import Agreement, Base

OWNER = 10
MENTOR = 20
PROJECT = 1


def mentorship_terms(**overrides) -> dict:
    terms = {
        "payment_type": "Hourly", "hourly_rate": 50, "weekly_hours": 10,
        "milestone_ids": [1, 2], "start_date": date(2025, 1, 1), "end_date": date(2025, 1, 29),
        "tasks": "Weekly product reviews",
    }
    terms.update(overrides)
    return terms


@pytest.fixture()
def engine():
    eng = build_engine("sqlite://")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def make_agreement(session: Session):
    """Create a committed agreement; OWNER proposes to MENTOR unless overridden."""

    def _make(*, initiator_id: int = OWNER, other_party_id: int = MENTOR, project_id: int = PROJECT,
              project_owner_id: int = OWNER, **terms) -> Agreement:
        result = services.create_agreement(
            session, project_id=project_id, project_owner_id=project_owner_id,
            initiator_id=initiator_id, other_party_id=other_party_id, terms=mentorship_terms(**terms),
        )
        assert result.ok, result.as_dict()
        session.commit()
        return result.value

    return _make
