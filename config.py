"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
workflow variant flags and logging. It uses environment variables for sensitive information and defaults for development.
In production, make sure to set the appropriate environment variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def _env_flag(name: str, default: str = "1") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'material_trials.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection for session-authenticated mutations
    WTF_CSRF_ENABLED = True

    # Lifecycle variant. Both on = extended flow (stores receipt + final CMK review).
    WORKFLOW_HAS_STORES_STAGE = _env_flag("WORKFLOW_HAS_STORES_STAGE")
    WORKFLOW_HAS_FINAL_REVIEW = _env_flag("WORKFLOW_HAS_FINAL_REVIEW")

    LOG_TO_STDOUT = _env_flag("LOG_TO_STDOUT", "0")

    APP_NAME = "Material Trial Tracker"


class TestingConfig(Config):
    """In-memory database, CSRF off."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False

    WORKFLOW_HAS_STORES_STAGE = True
    WORKFLOW_HAS_FINAL_REVIEW = True


class SimpleWorkflowTestingConfig(TestingConfig):
    """Simple variant: evaluation receives straight from delivery and its report completes the request."""

    WORKFLOW_HAS_STORES_STAGE = False
    WORKFLOW_HAS_FINAL_REVIEW = False
