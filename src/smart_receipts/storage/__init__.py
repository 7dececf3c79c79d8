"""Receipt image storage."""

from __future__ import annotations

from .images import IMAGE_ROUTE, ImageStorage, StoredImage

__all__ = ["IMAGE_ROUTE", "ImageStorage", "StoredImage"]
