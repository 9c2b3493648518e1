"""
material_trials/seed.py

Seed default reference values and demo users.

Rules:
- Safe to run multiple times (idempotent).
- Reference sets only grow; existing values are never removed.
- Demo users are matched by username; existing users are left untouched.
"""

from __future__ import annotations

import logging

from .extensions import db
from .lifecycle import Role
from .models import OptionCategory, OptionValue, User
from .utils import OPTION_KEY_MATERIAL_CATEGORY, OPTION_KEY_PURPOSE, OPTION_LABELS

logger = logging.getLogger(__name__)


DEFAULT_CATEGORIES = [
    (
        OPTION_KEY_MATERIAL_CATEGORY,
        OPTION_LABELS[OPTION_KEY_MATERIAL_CATEGORY],
        [
            "Cell",
            "Encapsulant",
            "Glass",
            "Junction Box",
            "Backsheet",
            "Flux",
            "Sealant",
            "Connector",
            "FG Module",
        ],
    ),
    (
        OPTION_KEY_PURPOSE,
        OPTION_LABELS[OPTION_KEY_PURPOSE],
        [
            "Quality Improvement",
            "Alternate Vendor Development",
            "Cost Reduction",
            "Performance Enhancement",
        ],
    ),
]


# username, display name, role
DEMO_USERS = [
    ("praful", "Praful Kumar", Role.REQUESTOR),
    ("cmk", "Chandramauli Kumar", Role.CMK),
    ("ppc", "PPC Team", Role.PPC),
    ("proc", "Procurement Team", Role.PROCUREMENT),
    ("stores", "Stores Team", Role.STORES),
    ("eval", "Evaluation Team", Role.EVALUATION),
    ("aarnav", "Aarnav Admin", Role.ADMIN),
]


def seed_default_options() -> None:
    """
    Create default OptionCategory and OptionValue rows if they don't exist.

    Idempotent behavior:
    - If category exists, we don't recreate it.
    - If a value exists under category, we don't recreate it.
    """
    for key, label, values in DEFAULT_CATEGORIES:
        category = OptionCategory.query.filter_by(key=key).first()
        if not category:
            category = OptionCategory(key=key, label=label)
            db.session.add(category)
            db.session.flush()
        elif category.label != label:
            category.label = label
            db.session.flush()

        for idx, val in enumerate(values):
            exists = OptionValue.query.filter_by(category_id=category.id, value=val).first()
            if exists:
                continue
            db.session.add(
                OptionValue(
                    category_id=category.id,
                    value=val,
                    sort_order=idx,
                    is_active=True,
                )
            )

    db.session.commit()


def seed_demo_users(password: str) -> int:
    """Create one demo user per role. Returns how many were created."""
    created = 0
    for username, name, role in DEMO_USERS:
        if User.query.filter_by(username=username).first():
            continue
        user = User(username=username, name=name, role=role, is_active=True)
        user.set_password(password)
        db.session.add(user)
        created += 1

    db.session.commit()
    logger.info("Seeded %d demo user(s)", created)
    return created
