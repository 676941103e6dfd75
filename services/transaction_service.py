"""
Transaction service.
Manual category corrections and read views over stored transactions.
"""
from typing import List, Optional

from core.db import Database, get_db
from core.exceptions import NotFoundError, ValidationError
from core.logger import setup_logger
from core.schema import Statement, Transaction
from core.validation import is_transaction_key, validate_category_name

logger = setup_logger(__name__)

MANUAL_CONFIDENCE = 1.0


class TransactionService:
    """Service for reading transactions and applying manual overrides."""

    def __init__(self, db: Optional[Database] = None):
        """Initialize transaction service."""
        self.db = db or get_db()

    def update_label(self, user_id: str, txn_key: str, new_category: str) -> Transaction:
        """
        Apply a manual category correction.

        The transaction's confidence becomes 1.0 and its override flag is set,
        so automatic classification never selects it again.

        Args:
            user_id: Owning user
            txn_key: Transaction key (DATE#...#TXN#...)
            new_category: Category chosen by the user

        Returns:
            The updated transaction

        Raises:
            ValidationError: If a field is missing or malformed
            NotFoundError: If the transaction does not exist
        """
        if not user_id or not txn_key or not new_category:
            raise ValidationError(
                "Missing required fields: userId, txnId, newCategory",
                details={"user_id": user_id, "txn_key": txn_key, "new_category": new_category}
            )

        if not is_transaction_key(txn_key):
            raise ValidationError("Invalid txnId format", details={"txn_key": txn_key})

        if not validate_category_name(new_category):
            raise ValidationError(
                "Category name must be uppercase letters and underscores only",
                details={"new_category": new_category}
            )

        if self.db.get_transaction(user_id, txn_key) is None:
            raise NotFoundError("Transaction not found", details={"user_id": user_id, "txn_key": txn_key})

        txn = self.db.update_transaction_category(
            user_id,
            txn_key,
            new_category,
            MANUAL_CONFIDENCE,
            manually_updated=True,
        )
        logger.info(f"Transaction {txn_key} manually set to {new_category}")
        return txn

    def get_statement(self, user_id: str, statement_id: str) -> Statement:
        """Fetch a statement or raise NotFoundError."""
        statement = self.db.get_statement(user_id, statement_id)
        if statement is None:
            raise NotFoundError(
                f"Statement {statement_id} not found",
                details={"user_id": user_id, "statement_id": statement_id}
            )
        return statement

    def list_statement_transactions(self, user_id: str, statement_id: str) -> List[Transaction]:
        """Transactions of one statement in key order."""
        return self.db.list_transactions(user_id, statement_id)
