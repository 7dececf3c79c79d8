"""HTTP client for the Smart Receipts API with an offline search fallback."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import TypeAdapter

from smart_receipts.auth import AuthEvent, AuthSession, AuthStateNotifier
from smart_receipts.library.filters import LibraryFilters, apply_filters_and_sort
from smart_receipts.library.stats import summarize_receipts
from smart_receipts.models.receipt import (
    GroupedReceiptView,
    GroupReceiptView,
    ReceiptDeleteResult,
    ReceiptRow,
    ReceiptSaveResult,
    ReceiptSummary,
    ReceiptUpdate,
    ReceiptUpdateResult,
    SingleReceiptView,
)
from smart_receipts.models.search import RankedResult, SearchResponse
from smart_receipts.search.tiers import (
    LocalSearchTier,
    SearchChain,
    SearchError,
    SearchQuery,
    TierResult,
)

CLIENT_TIMEOUT = 30.0

logger = logging.getLogger(__name__)

_GROUPED_ADAPTER: TypeAdapter[Any] = TypeAdapter(List[GroupedReceiptView])


class NotSignedInError(RuntimeError):
    """Raised when a user-scoped call is made without an auth session."""


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error")
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
    return f"HTTP {response.status_code}"


def _error_kind(response: httpx.Response) -> str:
    if response.status_code == 404:
        return "not_found"
    if response.status_code in (400, 422):
        return "validation"
    return "store"


class RemoteSearchTier:
    """Ask the API's smart search endpoint."""

    name = "remote"
    label = "remote search"
    accepts_empty = True

    def __init__(self, http: httpx.Client) -> None:
        self._http = http

    def search(self, query: SearchQuery) -> TierResult:
        try:
            response = self._http.post(
                "/search",
                json={
                    "query": query.query,
                    "userId": query.user_id,
                    "limit": query.limit,
                    "threshold": query.threshold,
                },
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Search service unavailable: %s", exc)
            return TierResult.failed(self.name, SearchError("search service unavailable", str(exc)))
        return TierResult(
            tier=body.get("tier") or self.name,
            results=[RankedResult.model_validate(item) for item in body.get("results") or []],
            fallback=bool(body.get("fallback")),
            message=body.get("message"),
        )


class SmartReceiptsClient:
    """User-scoped access to receipts, keeping the last loaded rows in memory."""

    def __init__(
        self,
        base_url: str,
        *,
        api_token: Optional[str] = None,
        auth: Optional[AuthStateNotifier] = None,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = CLIENT_TIMEOUT,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self._http = httpx.Client(base_url=base_url, headers=headers, transport=transport, timeout=timeout)
        self._auth = auth or AuthStateNotifier()
        self._rows: Optional[List[ReceiptRow]] = None
        self._cached_user: Optional[str] = None
        self._unsubscribe = self._auth.subscribe(self._on_auth_change)
        self._search_chain = SearchChain([RemoteSearchTier(self._http), LocalSearchTier(lambda: self._rows)])

    def __enter__(self) -> "SmartReceiptsClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._unsubscribe()
        self._http.close()

    @property
    def auth(self) -> AuthStateNotifier:
        return self._auth

    @property
    def cached_rows(self) -> Optional[List[ReceiptRow]]:
        return self._rows

    def sign_in(self, user_id: str, access_token: Optional[str] = None) -> AuthSession:
        session = AuthSession(user_id=user_id, access_token=access_token)
        self._auth.publish("SIGNED_IN", session)
        return session

    def sign_out(self) -> None:
        self._auth.publish("SIGNED_OUT", None)

    def _on_auth_change(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        if event == "SIGNED_OUT" or session is None or session.user_id != self._cached_user:
            self._rows = None
            self._cached_user = None

    def _user_id(self) -> str:
        session = self._auth.session
        if session is None:
            raise NotSignedInError("Sign in before accessing receipts")
        return session.user_id

    def load_receipts(self) -> List[Union[SingleReceiptView, GroupReceiptView]]:
        """Fetch grouped receipts and remember the underlying rows."""

        user_id = self._user_id()
        response = self._http.get("/receipts", params={"user_id": user_id})
        response.raise_for_status()
        views = _GROUPED_ADAPTER.validate_python(response.json())
        rows: List[ReceiptRow] = []
        for view in views:
            if isinstance(view, GroupReceiptView):
                rows.extend(view.receipts)
            else:
                rows.append(ReceiptRow.model_validate(view.model_dump(exclude={"type"})))
        self._rows = rows
        self._cached_user = user_id
        return views

    def _loaded_rows(self) -> List[ReceiptRow]:
        if self._rows is None:
            self.load_receipts()
        return list(self._rows or [])

    def library(
        self, filters: Optional[LibraryFilters] = None, sort_key: Optional[str] = None
    ) -> List[ReceiptRow]:
        return apply_filters_and_sort(self._loaded_rows(), filters, sort_key)

    def summary(self) -> ReceiptSummary:
        return summarize_receipts(self._loaded_rows())

    def search(self, query: str, *, limit: int = 5, threshold: float = 0.3) -> SearchResponse:
        """Smart search, falling back to the loaded rows when the API is unreachable."""

        if not query or not query.strip():
            return SearchResponse()
        return self._search_chain.run(
            SearchQuery(query=query.strip(), user_id=self._user_id(), limit=limit, threshold=threshold)
        )

    def save_receipt(self, extracted: Dict[str, Any], **options: Any) -> ReceiptSaveResult:
        payload = {"user_id": self._user_id(), "extracted": extracted, **options}
        response = self._http.post("/receipts", json=payload)
        if response.is_error:
            return ReceiptSaveResult(
                success=False,
                error=_error_detail(response),
                error_kind="validation" if response.status_code == 422 else "store",
            )
        self._rows = None
        return ReceiptSaveResult.model_validate(response.json())

    def delete_receipt(
        self, *, row_id: Optional[str] = None, group_id: Optional[str] = None
    ) -> ReceiptDeleteResult:
        if (row_id is None) == (group_id is None):
            return ReceiptDeleteResult(
                success=False,
                error="Exactly one of row_id or group_id is required",
                error_kind="validation",
            )
        path = f"/receipts/{row_id}" if row_id is not None else f"/receipt-groups/{group_id}"
        response = self._http.delete(path, params={"user_id": self._user_id()})
        if response.is_error:
            return ReceiptDeleteResult(
                success=False, error=_error_detail(response), error_kind=_error_kind(response)
            )
        self._rows = None
        return ReceiptDeleteResult.model_validate(response.json())

    def update_receipt(self, row_id: str, patch: ReceiptUpdate) -> ReceiptUpdateResult:
        response = self._http.patch(
            f"/receipts/{row_id}",
            params={"user_id": self._user_id()},
            json=patch.model_dump(mode="json", exclude_unset=True),
        )
        if response.is_error:
            return ReceiptUpdateResult(error=_error_detail(response), error_kind=_error_kind(response))
        self._rows = None
        return ReceiptUpdateResult(receipt=ReceiptRow.model_validate(response.json()))

    def upload_image(self, content: bytes, filename: str = "receipt.jpg") -> Dict[str, Any]:
        response = self._http.post(
            "/receipts/images",
            data={"user_id": self._user_id()},
            files={"file": (filename, content, "application/octet-stream")},
        )
        response.raise_for_status()
        return response.json()


__all__ = ["CLIENT_TIMEOUT", "NotSignedInError", "RemoteSearchTier", "SmartReceiptsClient"]
