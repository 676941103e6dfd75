"""
Tests for extraction job orchestration.
"""
from decimal import Decimal

import pytest

from core.exceptions import PersistenceError
from core.schema import UNASSIGNED, IngestRequest
from extraction.job import ExtractionJobOrchestrator, normalize_merchant
from extraction.polling import BackoffSchedule


@pytest.fixture
def request_fields():
    return IngestRequest(
        user_id="user-1",
        statement_id="stmt-1",
        key="uploads/user-1/jan.pdf",
        issuer="CHASE",
        card_last4="4242",
    )


def orchestrator(client, db, clock, deadline=240.0):
    return ExtractionJobOrchestrator(
        client=client,
        db=db,
        schedule=BackoffSchedule(deadline=deadline),
        bucket="raw-statements",
        sleep=clock.sleep,
        clock=clock,
    )


def two_pages(payloads):
    return {
        None: payloads.result_page([payloads.document(
            payloads.line_item(
                payloads.field("ITEM", "Starbucks  #123"),
                payloads.field("PRICE", "$4.50"),
                payloads.field("DATE", "01/02/2025"),
            ),
            payloads.line_item(payloads.field("ITEM", ""), payloads.field("PRICE", "0.00")),
        )], next_token="p2"),
        "p2": payloads.result_page([payloads.document(
            payloads.line_item(
                payloads.field("VENDOR", "Whole Foods"),
                payloads.field("AMOUNT", "82.10"),
                payloads.field("TRANSACTION_DATE", "2025-01-03"),
            ),
        )]),
    }


def test_normalize_merchant():
    assert normalize_merchant("  Whole   foods mkt ") == "WHOLE FOODS MKT"


def test_run_persists_unassigned_transactions(db, clock, payloads, make_extraction_client, request_fields):
    client = make_extraction_client(two_pages(payloads), statuses=["IN_PROGRESS", "SUCCEEDED"])

    result = orchestrator(client, db, clock).run(request_fields)

    assert result.success
    assert result.persisted_count == 2
    assert client.started == [("raw-statements", "uploads/user-1/jan.pdf")]

    transactions = db.list_transactions("user-1", "stmt-1")
    assert [t.sk for t in transactions] == [
        "DATE#2025-01-02#TXN#stmt-1-00000",
        "DATE#2025-01-03#TXN#stmt-1-00001",
    ]
    first = transactions[0]
    assert first.merchant_raw == "Starbucks  #123"
    assert first.merchant_norm == "STARBUCKS #123"
    assert first.amount == Decimal("4.50")
    assert first.category == UNASSIGNED
    assert first.confidence == 0.0
    assert first.issuer == "CHASE"
    assert first.card_last4 == "4242"


def test_run_reports_missing_job_id(db, clock, make_extraction_client, request_fields):
    client = make_extraction_client({}, job_id=None)
    result = orchestrator(client, db, clock).run(request_fields)
    assert not result.success
    assert "job id" in result.error


def test_run_reports_failed_job(db, clock, make_extraction_client, request_fields):
    client = make_extraction_client({}, statuses=["IN_PROGRESS", "FAILED"])
    result = orchestrator(client, db, clock).run(request_fields)
    assert not result.success
    assert db.list_transactions("user-1") == []


def test_run_reports_timeout(db, clock, make_extraction_client, request_fields):
    client = make_extraction_client({}, statuses=["IN_PROGRESS"] * 20)
    result = orchestrator(client, db, clock, deadline=10.0).run(request_fields)
    assert not result.success
    assert "timed out" in result.error


def test_partial_persistence_is_reported(db, clock, payloads, make_extraction_client, request_fields, monkeypatch):
    """Writes that succeeded before a failure stay in place and are counted."""
    client = make_extraction_client(two_pages(payloads))
    original_put = db.put_transaction
    calls = []

    def flaky_put(txn):
        calls.append(txn.sk)
        if len(calls) == 2:
            raise PersistenceError("disk full", details={"operation": "put_transaction"})
        original_put(txn)

    monkeypatch.setattr(db, "put_transaction", flaky_put)

    result = orchestrator(client, db, clock).run(request_fields)

    assert not result.success
    assert result.persisted_count == 1
    assert len(db.list_transactions("user-1", "stmt-1")) == 1
