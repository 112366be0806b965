"""Shared fixtures: in-memory database, API client and record factories."""

import os
from datetime import datetime, timedelta
from itertools import count

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("N8N_WEBHOOK_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from konver.core.database import Base, get_db
from konver.models import Bot, MessageFeedback
from main import app

BOT_ID = "bot-1"
OTHER_BOT_ID = "bot-2"


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def client(db_session):
    """API client wired to the test database."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_feedback(db_session):
    """Factory for feedback records; later records are created later."""
    sequence = count()
    base_time = datetime(2024, 1, 1, 12, 0, 0)

    def _make(**overrides):
        n = next(sequence)
        values = {
            "bot_id": BOT_ID,
            "user_message_context": f"context {n}",
            "original_bot_response": "Sorry, I don't know.",
            "improved_response": f"Improved answer {n}",
            "status": "applied",
            "similarity_keywords": [],
            "times_applied": 0,
            "created_at": base_time + timedelta(minutes=n),
        }
        values.update(overrides)
        feedback = MessageFeedback(**values)
        db_session.add(feedback)
        db_session.commit()
        db_session.refresh(feedback)
        return feedback

    return _make


@pytest.fixture
def make_bot(db_session):
    """Factory for bots."""
    def _make(**overrides):
        values = {"id": BOT_ID, "name": "Anna", "whatsapp_status": "disconnected"}
        values.update(overrides)
        bot = Bot(**values)
        db_session.add(bot)
        db_session.commit()
        db_session.refresh(bot)
        return bot

    return _make
