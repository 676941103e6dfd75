"""
End-to-end tests for the statement pipeline state machine.
"""
from decimal import Decimal

import pytest

from core.exceptions import LLMError, NotFoundError, ValidationError
from core.schema import Category, StatementStatus
from extraction.job import ExtractionJobOrchestrator
from extraction.polling import BackoffSchedule
from llm.classify import ClassificationEngine
from services.pipeline import PipelineState, StatementPipeline
from services.transaction_service import TransactionService

NOW = "2025-01-05T00:00:00+00:00"


def ingest_request(**overrides):
    data = {
        "user_id": "user-1",
        "statement_id": "stmt-1",
        "key": "uploads/user-1/jan.pdf",
        "issuer": "CHASE",
        "card_last4": "4242",
    }
    data.update(overrides)
    return data


@pytest.fixture
def vocabulary(db):
    for name in ("GROCERIES", "DINING"):
        db.put_category(Category(user_id="user-1", name=name, created_at=NOW, updated_at=NOW))


@pytest.fixture
def statement_pages(payloads):
    return {
        None: payloads.result_page([payloads.document(
            payloads.line_item(
                payloads.field("ITEM", "Whole Foods"),
                payloads.field("PRICE", "$82.10"),
                payloads.field("DATE", "01/02/2025"),
            ),
            payloads.line_item(payloads.field("ITEM", ""), payloads.field("PRICE", "0.00")),
        )]),
    }


def build_pipeline(db, clock, client, model, **kwargs):
    extractor = ExtractionJobOrchestrator(
        client=client,
        db=db,
        schedule=BackoffSchedule(deadline=30.0),
        bucket="raw-statements",
        sleep=clock.sleep,
        clock=clock,
    )
    return StatementPipeline(
        db=db,
        extractor=extractor,
        classifier=ClassificationEngine(db=db, model=model),
        **kwargs,
    )


def test_statement_is_parsed_and_classified(db, clock, vocabulary, statement_pages, make_extraction_client, make_model):
    """Two candidates, one filtered, one transaction classified as GROCERIES."""
    client = make_extraction_client(statement_pages, statuses=["IN_PROGRESS", "SUCCEEDED"])
    model = make_model({"items": [{"index": 0, "category": "GROCERIES", "confidence": 0.9}]})
    pipeline = build_pipeline(db, clock, client, model)

    run = pipeline.run(ingest_request(), "run-1")

    assert run.history == [
        PipelineState.VALIDATE,
        PipelineState.EXTRACT,
        PipelineState.CLASSIFY,
        PipelineState.FINALIZE_OK,
    ]
    assert run.status == StatementStatus.PARSED
    assert run.line_item_count == 1
    assert run.classified_count == 1
    assert run.error is None

    transactions = db.list_transactions("user-1", "stmt-1")
    assert len(transactions) == 1
    assert transactions[0].sk == "DATE#2025-01-02#TXN#stmt-1-00000"
    assert transactions[0].amount == Decimal("82.10")
    assert transactions[0].category == "GROCERIES"
    assert transactions[0].confidence == 0.9

    statement = db.get_statement("user-1", "stmt-1")
    assert statement.status == StatementStatus.PARSED
    assert statement.line_item_count == 1
    assert statement.document_key == "uploads/user-1/jan.pdf"


def test_invalid_input_never_starts_a_job(db, clock, make_extraction_client, make_model):
    client = make_extraction_client({})
    pipeline = build_pipeline(db, clock, client, make_model("{}"))

    run = pipeline.run(ingest_request(key="elsewhere/jan.pdf"), "run-1")

    assert run.history == [PipelineState.VALIDATE, PipelineState.FINALIZE_FAILED]
    assert run.failed_state == PipelineState.VALIDATE
    assert "key" in run.error
    assert client.started == []
    statement = db.get_statement("user-1", "stmt-1")
    assert statement.status == StatementStatus.FAILED
    assert statement.error == run.error


def test_unidentifiable_input_finalizes_without_record(db, clock, make_extraction_client, make_model):
    pipeline = build_pipeline(db, clock, make_extraction_client({}), make_model("{}"))

    run = pipeline.run({"key": "uploads/x.pdf"}, "run-1")

    assert run.state == PipelineState.FINALIZE_FAILED
    assert run.status == StatementStatus.FAILED


def test_extraction_failure_marks_statement_failed(db, clock, make_extraction_client, make_model):
    client = make_extraction_client({}, statuses=["IN_PROGRESS", "FAILED"])
    model = make_model(LLMError("should not be called"))
    pipeline = build_pipeline(db, clock, client, model)

    run = pipeline.run(ingest_request(), "run-1")

    assert run.history[-1] == PipelineState.FINALIZE_FAILED
    assert run.failed_state == PipelineState.EXTRACT
    assert model.prompts == []
    assert db.get_statement("user-1", "stmt-1").status == StatementStatus.FAILED


def test_classification_failure_keeps_transactions(db, clock, vocabulary, statement_pages, make_extraction_client, make_model):
    client = make_extraction_client(statement_pages)
    pipeline = build_pipeline(db, clock, client, make_model(LLMError("gateway down")))

    run = pipeline.run(ingest_request(), "run-1")

    assert run.failed_state == PipelineState.CLASSIFY
    assert run.error == "gateway down"
    assert run.line_item_count == 1
    statement = db.get_statement("user-1", "stmt-1")
    assert statement.status == StatementStatus.FAILED
    assert statement.line_item_count == 1
    assert len(db.list_transactions("user-1", "stmt-1")) == 1


def test_stage_exception_routes_to_failure(db, clock, make_extraction_client, make_model):
    class ExplodingExtractor:
        def run(self, request):
            raise RuntimeError("boom")

    pipeline = StatementPipeline(
        db=db,
        extractor=ExplodingExtractor(),
        classifier=ClassificationEngine(db=db, model=make_model("{}")),
    )

    run = pipeline.run(ingest_request(), "run-1")

    assert run.failed_state == PipelineState.EXTRACT
    assert run.error == "boom"
    assert db.get_statement("user-1", "stmt-1").status == StatementStatus.FAILED


def test_resubmit_failed_statement(db, clock, vocabulary, statement_pages, make_extraction_client, make_model):
    failing = build_pipeline(db, clock, make_extraction_client({}, statuses=["FAILED"]), make_model("{}"))
    failing.run(ingest_request(), "run-1")

    model = make_model({"items": [{"index": 0, "category": "GROCERIES", "confidence": 0.9}]})
    retry = build_pipeline(db, clock, make_extraction_client(statement_pages), model)
    run = retry.resubmit("user-1", "stmt-1", "run-2")

    assert run.status == StatementStatus.PARSED
    assert db.get_statement("user-1", "stmt-1").status == StatementStatus.PARSED


def test_resubmit_purge_policy_removes_leftovers(db, clock, vocabulary, statement_pages, make_extraction_client, make_model):
    first = build_pipeline(db, clock, make_extraction_client(statement_pages), make_model(LLMError("down")))
    first.run(ingest_request(), "run-1")
    assert len(db.list_transactions("user-1", "stmt-1")) == 1

    calls = []
    original_delete = db.delete_statement_transactions

    def tracking_delete(user_id, statement_id):
        calls.append(statement_id)
        return original_delete(user_id, statement_id)

    db.delete_statement_transactions = tracking_delete
    model = make_model({"items": [{"index": 0, "category": "DINING", "confidence": 0.6}]})
    retry = build_pipeline(db, clock, make_extraction_client(statement_pages), model, reprocess_policy="purge")
    run = retry.resubmit("user-1", "stmt-1", "run-2")

    assert calls == ["stmt-1"]
    assert run.status == StatementStatus.PARSED
    assert db.list_transactions("user-1", "stmt-1")[0].category == "DINING"


def test_resubmit_keep_policy_overwrites_reextracted_rows(db, clock, vocabulary, statement_pages, make_extraction_client, make_model):
    first = build_pipeline(db, clock, make_extraction_client(statement_pages), make_model(
        {"items": [{"index": 0, "category": "GROCERIES", "confidence": 0.9}]}
    ))
    first.run(ingest_request(), "run-1")
    db.update_statement_status("user-1", "stmt-1", StatementStatus.FAILED, 1, "forced")

    retry = build_pipeline(
        db, clock, make_extraction_client(statement_pages), make_model(LLMError("gateway down")),
        reprocess_policy="keep",
    )
    run = retry.resubmit("user-1", "stmt-1", "run-2")

    assert run.status == StatementStatus.FAILED
    assert run.failed_state == PipelineState.CLASSIFY
    assert db.list_transactions("user-1", "stmt-1")[0].category == "UNASSIGNED"


def test_resubmit_keep_policy_preserves_manual_label(db, clock, vocabulary, statement_pages, make_extraction_client, make_model):
    """A label set between runs survives re-extraction and is not sent to the model again."""
    first = build_pipeline(db, clock, make_extraction_client(statement_pages), make_model(LLMError("gateway down")))
    assert first.run(ingest_request(), "run-1").failed_state == PipelineState.CLASSIFY

    sk = db.list_transactions("user-1", "stmt-1")[0].sk
    TransactionService(db).update_label("user-1", sk, "DINING")

    model = make_model({"items": [{"index": 0, "category": "GROCERIES", "confidence": 0.9}]})
    retry = build_pipeline(db, clock, make_extraction_client(statement_pages), model, reprocess_policy="keep")
    run = retry.resubmit("user-1", "stmt-1", "run-2")

    assert run.status == StatementStatus.PARSED
    assert model.prompts == []
    txn = db.get_transaction("user-1", sk)
    assert (txn.category, txn.confidence, txn.manually_updated) == ("DINING", 1.0, True)


def test_resubmit_rejects_unknown_and_non_failed(db, clock, vocabulary, statement_pages, make_extraction_client, make_model):
    pipeline = build_pipeline(
        db, clock, make_extraction_client(statement_pages),
        make_model({"items": [{"index": 0, "category": "GROCERIES", "confidence": 0.9}]}),
    )
    with pytest.raises(NotFoundError):
        pipeline.resubmit("user-1", "missing", "run-1")

    pipeline.run(ingest_request(), "run-1")
    with pytest.raises(ValidationError):
        pipeline.resubmit("user-1", "stmt-1", "run-2")
