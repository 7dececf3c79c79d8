"""Persistence layer for receipt rows."""
