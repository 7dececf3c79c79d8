"""Receipt image bucket on the local filesystem with HMAC-signed download URLs."""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional
from urllib.parse import parse_qs, quote, unquote, urlsplit

from smart_receipts.config import Settings, get_settings

IMAGE_ROUTE = "/receipts/images/"
_URL_MARKERS = (
    IMAGE_ROUTE,
    "/storage/v1/object/public/receipt-images/",
    "/storage/v1/object/sign/receipt-images/",
)
_RANDOM_ALPHABET = string.ascii_lowercase + string.digits
_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,8}$")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredImage:
    path: str
    url: str
    expires_at: datetime


class ImageStorage:
    """User-scoped image files addressed by ``{user_id}/{timestamp}-{random}.{ext}``."""

    def __init__(
        self,
        root: Path,
        *,
        secret: str,
        public_url: str = "",
        ttl_seconds: int = 365 * 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._root = Path(root)
        self._secret = secret.encode("utf-8")
        self._public_url = public_url.rstrip("/")
        self._ttl = int(ttl_seconds)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ImageStorage":
        settings = settings or get_settings()
        return cls(
            settings.storage_path,
            secret=settings.signing_secret,
            public_url=settings.storage_public_url,
            ttl_seconds=settings.signed_url_ttl,
        )

    def _resolve(self, path: str) -> Path:
        root = self._root.resolve()
        candidate = (root / path).resolve()
        if candidate == root or root not in candidate.parents:
            raise ValueError("Invalid image path")
        return candidate

    def upload(self, user_id: str, content: bytes, filename: Optional[str] = None) -> StoredImage:
        if not user_id or "/" in user_id or "\\" in user_id or user_id in {".", ".."}:
            raise ValueError("Invalid user id")
        if not content:
            raise ValueError("Image content is empty")

        extension = "jpg"
        if filename and "." in filename:
            candidate = filename.rsplit(".", 1)[-1].lower()
            if _EXTENSION_RE.match(candidate):
                extension = candidate
        random_id = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(13))
        path = f"{user_id}/{int(self._clock() * 1000)}-{random_id}.{extension}"

        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.info("Stored receipt image %s (%s bytes)", path, len(content), extra={"user_id": user_id})

        url, expires_at = self.sign(path)
        return StoredImage(path=path, url=url, expires_at=expires_at)

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise ValueError(f"Image {path} not found")
        return target.read_bytes()

    def remove(self, paths: Iterable[str]) -> List[str]:
        """Delete stored images, logging (not raising) individual failures."""

        removed: List[str] = []
        for path in paths:
            if not path:
                continue
            try:
                self._resolve(path).unlink()
            except FileNotFoundError:
                logger.warning("Image %s already removed", path)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to remove image %s: %s", path, exc)
            else:
                removed.append(path)
        return removed

    def _signature(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def sign(self, path: str) -> tuple[str, datetime]:
        expires = int(self._clock()) + self._ttl
        signature = self._signature(path, expires)
        url = f"{self._public_url}{IMAGE_ROUTE}{quote(path)}?expires={expires}&signature={signature}"
        return url, datetime.fromtimestamp(expires, tz=timezone.utc)

    def verify(self, path: str, expires: int, signature: str) -> bool:
        if expires < int(self._clock()):
            return False
        return hmac.compare_digest(self._signature(path, expires), signature)

    @staticmethod
    def path_from_url(url: Optional[str]) -> Optional[str]:
        """Recover the bucket path from a signed/public URL or a bare path."""

        if not url:
            return None
        for marker in _URL_MARKERS:
            if marker in url:
                tail = url.split(marker, 1)[1].split("?", 1)[0]
                return unquote(tail) or None
        if "://" in url:
            return None
        return url.lstrip("/") or None

    @staticmethod
    def is_owned_by(path: Optional[str], user_id: str) -> bool:
        """True when ``path`` lives under the user's own folder."""

        if not path or not user_id:
            return False
        return path.startswith(f"{user_id}/") and ".." not in path.split("/")

    @staticmethod
    def _is_bare_path(url: str) -> bool:
        return "?" not in url and "://" not in url and not any(marker in url for marker in _URL_MARKERS)

    def is_expired(self, url: str) -> bool:
        query = parse_qs(urlsplit(url).query)
        raw = (query.get("expires") or [None])[0]
        if raw is None:
            return False
        try:
            return int(raw) < int(self._clock())
        except ValueError:
            return True

    def refresh_url(self, url: Optional[str], path: Optional[str] = None) -> Optional[str]:
        """Re-sign an image URL by path once its signature has lapsed.

        A bare bucket path is always turned into a signed URL.
        """

        if not url and not path:
            return url
        if url and not self.is_expired(url) and not self._is_bare_path(url):
            return url
        resolved = path or self.path_from_url(url)
        if not resolved:
            return url
        signed, _ = self.sign(resolved)
        return signed


__all__ = ["IMAGE_ROUTE", "StoredImage", "ImageStorage"]
