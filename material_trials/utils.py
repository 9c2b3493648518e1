"""
Utility functions shared across the app. This includes:
- get_active_options / register_option_value: the open reference sets
  (material categories, purposes) that grow when a requestor supplies an "Other" value.
- Parsing helpers for payload values (text, decimals, dates, booleans).
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import OptionCategory, OptionValue

logger = logging.getLogger(__name__)

OPTION_KEY_MATERIAL_CATEGORY = "MATERIAL_CATEGORY"
OPTION_KEY_PURPOSE = "PURPOSE"

OPTION_LABELS = {
    OPTION_KEY_MATERIAL_CATEGORY: "Material Categories",
    OPTION_KEY_PURPOSE: "Purposes",
}

# Marker the UI sends when the real value is in a custom field.
OTHER_MARKER = "Other"


def get_active_options(category_key: str) -> list[str]:
    """
    Return a list of active option strings for a given category key.

    Used to populate the material category / purpose dropdowns.
    """
    category = OptionCategory.query.filter_by(key=category_key).first()
    if not category:
        return []

    values = (
        OptionValue.query
        .filter_by(category_id=category.id, is_active=True)
        .order_by(OptionValue.sort_order.asc(), OptionValue.value.asc())
        .all()
    )
    return [v.value for v in values]


def get_or_create_category(key: str) -> OptionCategory:
    """Ensure an OptionCategory exists (flushes, does not commit)."""
    category = OptionCategory.query.filter_by(key=key).first()
    if category:
        return category

    category = OptionCategory(key=key, label=OPTION_LABELS.get(key, key))
    db.session.add(category)
    db.session.flush()
    return category


def _find_option(category_id: int, value: str) -> OptionValue | None:
    return OptionValue.query.filter_by(category_id=category_id, value=value).first()


def register_option_value(category_key: str, value: str) -> bool:
    """
    Add `value` to a reference set. Returns True if it was new.

    Set semantics: an existing value (active or not) is a no-op, apart from
    reactivating it. The insert runs in a savepoint so a value added by a
    concurrent writer is treated as already present. The caller commits.
    """
    value = clean_text(value)
    if not value or value == OTHER_MARKER:
        return False

    category = get_or_create_category(category_key)
    existing = _find_option(category.id, value)
    if existing:
        if not existing.is_active:
            existing.is_active = True
        return False

    next_order = (
        db.session.query(db.func.coalesce(db.func.max(OptionValue.sort_order), -1))
        .filter(OptionValue.category_id == category.id)
        .scalar()
    )
    option = OptionValue(
        category_id=category.id,
        value=value,
        sort_order=int(next_order) + 1,
        is_active=True,
    )
    try:
        with db.session.begin_nested():
            db.session.add(option)
    except IntegrityError:
        # Another writer inserted the same value after our lookup.
        logger.info("Option %s '%s' already registered concurrently", category_key, value)
        return False
    return True


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def clean_text(value) -> str:
    """Strip a payload value; None becomes ''."""
    if value is None:
        return ""
    return str(value).strip()


def parse_decimal(value) -> Decimal | None:
    """Parse decimal from user input (accepts comma or dot)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    raw = str(value).strip().replace(",", ".")
    if raw == "":
        return None
    try:
        return Decimal(raw)
    except (InvalidOperation, ValueError):
        return None


def parse_date(value) -> date | None:
    """Parse an ISO date (YYYY-MM-DD); full ISO datetimes are truncated to their date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def parse_bool(value) -> bool:
    """Form/JSON truthiness: true/1/yes/on."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
