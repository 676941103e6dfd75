"""
Category management: create, list, update and seed a user's vocabulary.
"""
from typing import List, Optional

from core.db import Database, get_db, now_iso
from core.exceptions import ValidationError
from core.logger import setup_logger
from core.schema import UNASSIGNED, Category
from core.validation import validate_category_name

logger = setup_logger(__name__)

DEFAULT_CATEGORIES = [
    ("GROCERIES", ["SUPERMARKET", "GROCERY", "FOOD LION", "KROGER", "SAFEWAY"]),
    ("DINING", ["RESTAURANT", "CAFE", "STARBUCKS", "MCDONALDS", "SUBWAY"]),
    ("SHOPPING", ["AMAZON", "WALMART", "TARGET", "BEST BUY", "ONLINE"]),
    ("TRANSPORTATION", ["GAS", "UBER", "LYFT", "PARKING", "TOLL"]),
    ("ENTERTAINMENT", ["NETFLIX", "SPOTIFY", "MOVIE", "CONCERT", "GAME"]),
    ("UTILITIES", ["ELECTRIC", "WATER", "INTERNET", "PHONE", "CABLE"]),
    ("RENT", ["RENT", "MORTGAGE", "HOUSING"]),
    ("TRAVEL", ["HOTEL", "AIRLINE", "VACATION", "TRIP"]),
    ("HEALTHCARE", ["DOCTOR", "PHARMACY", "CVS", "WALGREENS", "HOSPITAL"]),
    ("INCOME", ["SALARY", "PAYROLL", "DEPOSIT", "REFUND"]),
    ("TRANSFERS", ["TRANSFER", "PAYMENT", "CREDIT"]),
    (UNASSIGNED, []),
]


def _clean_hints(hints: Optional[List[str]]) -> List[str]:
    if hints is None:
        return []
    if not isinstance(hints, list) or not all(isinstance(h, str) for h in hints):
        raise ValidationError("hints must be a list of strings", details={"hints": hints})
    return [h.strip() for h in hints if h.strip()]


class CategoryService:
    """Service for a user's category vocabulary."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def create_category(self, user_id: str, name: str, hints: Optional[List[str]] = None) -> Category:
        """
        Create (or overwrite) an active category.

        Raises:
            ValidationError: If the name is not an uppercase token
        """
        if not name or not isinstance(name, str):
            raise ValidationError("Category name is required")
        if not validate_category_name(name):
            raise ValidationError(
                "Category name must be uppercase letters and underscores only",
                details={"name": name}
            )

        timestamp = now_iso()
        category = Category(
            user_id=user_id,
            name=name,
            active=True,
            hints=_clean_hints(hints),
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.db.put_category(category)
        logger.info(f"Created category {name} for user {user_id}")
        return category

    def list_categories(self, user_id: str) -> List[Category]:
        """All categories of a user, active or not."""
        return self.db.list_categories(user_id)

    def update_category(
        self,
        user_id: str,
        name: str,
        active: Optional[bool] = None,
        hints: Optional[List[str]] = None,
    ) -> Category:
        """
        Change a category's active flag and/or hints.

        Raises:
            ValidationError: If the name is missing
            NotFoundError: If the category does not exist
        """
        if not name or not isinstance(name, str):
            raise ValidationError("Category name is required")
        if active is not None and not isinstance(active, bool):
            raise ValidationError("active must be a boolean", details={"active": active})

        return self.db.update_category(
            user_id,
            name,
            active=active,
            hints=_clean_hints(hints) if hints is not None else None,
        )

    def seed_defaults(self, user_id: str) -> List[str]:
        """Write the default vocabulary for a user; returns the names written."""
        for name, hints in DEFAULT_CATEGORIES:
            self.create_category(user_id, name, hints)
        logger.info(f"Seeded {len(DEFAULT_CATEGORIES)} categories for user {user_id}")
        return [name for name, _ in DEFAULT_CATEGORIES]
