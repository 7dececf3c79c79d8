"""
Smart Receipts backend package.

The package stores purchase receipts, groups multi-product purchases, tracks
warranty expirations and serves embedding-backed smart search.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
