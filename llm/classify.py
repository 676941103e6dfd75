"""
Statement classification using one batched model call.
Queries UNASSIGNED transactions, prompts the model, validates and applies its answer.
"""
import json
from typing import Dict, List, Optional, Protocol

from pydantic import ValidationError

from core.config import get_settings
from core.db import Database, get_db
from core.exceptions import ModelResponseParseError, StatementPipelineException
from core.logger import setup_logger
from core.matching import resolve_category
from core.schema import ClassificationItem, ClassificationResponse, ClassificationResult
from llm.client import get_client
from llm.prompts import build_classification_prompt

logger = setup_logger(__name__)


class GenerativeModel(Protocol):
    def invoke(self, prompt: str) -> str: ...


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code block if present."""
    stripped = text.strip()
    if stripped.startswith("```"):
        lines = stripped.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        stripped = "\n".join(lines).strip()
    return stripped


def parse_classification_response(text: str) -> ClassificationResponse:
    """
    Parse generation text into the fixed {items: [...]} shape.

    Args:
        text: Raw generation string

    Returns:
        ClassificationResponse

    Raises:
        ModelResponseParseError: If the text is not JSON or not in the expected shape
    """
    if not isinstance(text, str) or not text.strip():
        raise ModelResponseParseError("Model returned an empty generation")

    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ModelResponseParseError(
            f"Model output is not valid JSON: {e}",
            details={"raw_response": text}
        )

    try:
        return ClassificationResponse.model_validate(data)
    except ValidationError as e:
        raise ModelResponseParseError(
            f"Model output does not match the classification schema: {e.error_count()} errors",
            details={"raw_response": text, "errors": e.errors(include_url=False)}
        )


def select_updates(items: List[ClassificationItem], count: int) -> Dict[int, ClassificationItem]:
    """
    Keep items whose index points into the queried list.

    Out-of-range indices are dropped; for a repeated index the first item wins.
    """
    selected: Dict[int, ClassificationItem] = {}
    for item in items:
        if not 0 <= item.index < count:
            logger.warning(f"Ignoring classification for out-of-range index {item.index}")
            continue
        if item.index in selected:
            logger.warning(f"Ignoring duplicate classification for index {item.index}")
            continue
        selected[item.index] = item
    return selected


class ClassificationEngine:
    """Classifies every still-UNASSIGNED transaction of a statement."""

    def __init__(
        self,
        db: Optional[Database] = None,
        model: Optional[GenerativeModel] = None,
        match_threshold: Optional[float] = None,
    ):
        self.db = db or get_db()
        self._model = model
        self.match_threshold = (
            match_threshold if match_threshold is not None
            else get_settings().category_match_threshold
        )

    @property
    def model(self) -> GenerativeModel:
        if self._model is None:
            self._model = get_client()
        return self._model

    def classify(self, user_id: str, statement_id: str) -> ClassificationResult:
        """
        Classify a statement's unassigned transactions.

        Safe to call repeatedly: rows already classified or manually edited are
        not selected again.

        Args:
            user_id: Owning user
            statement_id: Statement whose transactions are classified

        Returns:
            ClassificationResult with the number of transactions updated
        """
        if not user_id or not statement_id:
            return ClassificationResult(
                success=False,
                error=f"Missing required input: user_id={user_id}, statement_id={statement_id}"
            )

        logger.info(f"Classifying transactions for statement {statement_id}")

        try:
            categories = [c.name for c in self.db.list_categories(user_id, active_only=True)]
            transactions = self.db.query_unassigned_transactions(user_id, statement_id)
            logger.info(f"{len(transactions)} unclassified transactions, {len(categories)} active categories")

            if not transactions:
                return ClassificationResult(success=True, classified_count=0)

            prompt = build_classification_prompt(transactions, categories)
            logger.debug(f"Classification prompt:\n{prompt}")

            generation = self.model.invoke(prompt)
            response = parse_classification_response(generation)

            updates = select_updates(response.items, len(transactions))
            classified_count = 0
            for index, item in sorted(updates.items()):
                txn = transactions[index]
                category = resolve_category(item.category, categories, self.match_threshold)
                self.db.update_transaction_category(user_id, txn.sk, category, item.confidence)
                classified_count += 1

            logger.info(f"Classified {classified_count}/{len(transactions)} transactions of statement {statement_id}")
            return ClassificationResult(success=True, classified_count=classified_count)

        except StatementPipelineException as e:
            logger.error(f"Classification failed for statement {statement_id}: {e.message}")
            return ClassificationResult(success=False, error=e.message)

        except Exception as e:
            logger.error(f"Unexpected classification error for statement {statement_id}: {e}", exc_info=True)
            return ClassificationResult(success=False, error=str(e))
