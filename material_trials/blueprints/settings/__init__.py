"""
Settings blueprint package.

This file just exposes the Blueprint object to be imported in material_trials.__init__.
The actual routes and logic are in routes.py.
"""

from .routes import settings_bp  # noqa: F401
