"""ASGI application factory and dependencies for the Smart Receipts server."""

from smart_receipts.server.app import app, create_app

__all__ = ["app", "create_app"]
