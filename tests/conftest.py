"""
Shared fixtures: isolated settings, a temporary database and fakes for the
extraction service, the model gateway and the clock.
"""
import json
from typing import Any, Dict, List, Optional

import pytest

from core.config import reset_settings
from core.db import Database, reset_db
from core.schema import JobPage


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point storage at a temporary directory and rebuild settings per test."""
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "statements.db"))
    monkeypatch.setenv("ANALYTICS_PATH", str(tmp_path / "analytics"))
    monkeypatch.setenv("MODEL_GATEWAY_URL", "http://gateway.test/invoke")
    monkeypatch.setenv("EXTRACTION_SERVICE_URL", "http://extraction.test")
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("REPROCESS_POLICY", raising=False)
    monkeypatch.setattr("llm.client._client", None)
    reset_settings()
    reset_db()
    yield
    reset_settings()
    reset_db()


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    database.init_db()
    return database


# ---- Extraction service payloads --------------------------------------------

def field(field_type: str, text: str) -> Dict[str, Any]:
    """A field in the nested shape the extraction service returns."""
    return {"Type": {"Text": field_type}, "ValueDetection": {"Text": text}}


def line_item(*fields: Dict[str, Any]) -> Dict[str, Any]:
    return {"LineItemExpenseFields": list(fields)}


def document(*items: Dict[str, Any]) -> Dict[str, Any]:
    return {"LineItemGroups": [{"LineItems": list(items)}]}


def result_page(documents: List[Dict[str, Any]], next_token: Optional[str] = None) -> Dict[str, Any]:
    page = {"JobStatus": "SUCCEEDED", "ExpenseDocuments": documents}
    if next_token:
        page["NextToken"] = next_token
    return page


@pytest.fixture
def payloads():
    """Builders for extraction service payloads."""
    class Payloads:
        pass

    builders = Payloads()
    builders.field = field
    builders.line_item = line_item
    builders.document = document
    builders.result_page = result_page
    return builders


class FakeExtractionClient:
    """
    In-memory extraction service.

    Each get_job call first consumes one queued status; once the queue is
    empty (or a SUCCEEDED status is consumed) result pages are served by
    continuation token.
    """

    def __init__(
        self,
        pages: Dict[Optional[str], Dict[str, Any]],
        statuses: List[str] = None,
        job_id: Optional[str] = "job-1",
    ):
        self.pages = pages
        self.statuses = list(statuses or ["SUCCEEDED"])
        self.job_id = job_id
        self.started: List[tuple] = []
        self.calls: List[Optional[str]] = []

    def start_job(self, bucket: str, key: str) -> Optional[str]:
        self.started.append((bucket, key))
        return self.job_id

    def get_job(self, job_id: str, next_token: Optional[str] = None) -> JobPage:
        self.calls.append(next_token)
        if self.statuses:
            status = self.statuses.pop(0)
            if status != "SUCCEEDED":
                return JobPage(JobStatus=status, StatusMessage=f"job is {status.lower()}")
        return JobPage.model_validate(self.pages[next_token])


@pytest.fixture
def make_extraction_client():
    return FakeExtractionClient


class StubModel:
    """Model gateway stand-in returning canned generations."""

    def __init__(self, *generations: Any):
        self.generations = list(generations)
        self.prompts: List[str] = []

    def invoke(self, prompt: str) -> str:
        self.prompts.append(prompt)
        generation = self.generations.pop(0) if len(self.generations) > 1 else self.generations[0]
        if isinstance(generation, Exception):
            raise generation
        if isinstance(generation, dict):
            return json.dumps(generation)
        return generation


@pytest.fixture
def make_model():
    return StubModel


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
