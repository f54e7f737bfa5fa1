"""Pytest configuration and fixtures."""

import json
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Generator, List, Union

import pytest

from growthbot.config import Settings
from growthbot.database import DatabaseManager
from growthbot.llm import ExtractionClient
from growthbot.models import AppRecord, ReviewRecord

RUN_DATE = "2026-10-18"


@pytest.fixture
def temp_db() -> Generator[DatabaseManager, None, None]:
    """A fresh SQLite database with the agent schema."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    db = DatabaseManager(str(db_path))
    db.ensure_schema()

    try:
        yield db
    finally:
        db_path.unlink(missing_ok=True)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with pacing disabled so tests never wait."""
    return Settings(
        anthropic_api_key="test-key",
        batch_delay_seconds=0,
        rate_limit_default_wait=0,
        opportunity_delay_seconds=0,
        outcome_delay_seconds=0,
        _env_file=None,
    )


class FakeMessages:
    """Stands in for ``anthropic.Anthropic().messages``.

    Each queued response is a string (returned as a text block), an
    exception (raised), or a callable taking the request kwargs.
    """

    def __init__(self, responses: List[Union[str, Exception, Callable[..., str]]]):
        self.responses = list(responses)
        self.calls: List[dict] = []

    def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if not self.responses:
            text = "[]"
        else:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            text = response(**kwargs) if callable(response) else response
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


class FakeAnthropic:
    def __init__(self, responses: List[Any]):
        self.messages = FakeMessages(responses)


@pytest.fixture
def fake_llm() -> Callable[..., ExtractionClient]:
    """Build an ExtractionClient backed by queued fake responses."""

    def build(*responses: Any) -> ExtractionClient:
        return ExtractionClient(FakeAnthropic(list(responses)))

    return build


def complaint_json(*items: tuple) -> str:
    """Serialize ``(review_index, text, category, severity)`` tuples."""
    return json.dumps(
        [
            {
                "review_index": index,
                "complaint_text": text,
                "complaint_category": category,
                "severity": severity,
            }
            for index, text, category, severity in items
        ]
    )


def seed_reviews(db: DatabaseManager, count: int, app_id: str = "100") -> None:
    """Store one app and ``count`` low-rating reviews for it."""
    db.upsert_apps(
        [AppRecord(app_id=app_id, name=f"App {app_id}", app_category="Games", current_rank=1)]
    )
    db.insert_reviews(
        [
            ReviewRecord(
                app_id=app_id,
                itunes_id=f"r{i}",
                rating=1 + i % 3,
                title=f"Review {i}",
                body=f"Body of review {i}",
            )
            for i in range(count)
        ]
    )
