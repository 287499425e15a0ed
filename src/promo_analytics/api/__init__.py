"""
FastAPI server for Promo Analytics.

Provides REST API endpoints for planning tools and other consumers
to access analytics without direct Python imports.
"""

from .server import app, create_app

__all__ = ["app", "create_app"]
