"""Shared helpers for integration tests."""

from __future__ import annotations

from typing import Any

from smart_receipts.config import get_settings


def auth_headers() -> dict[str, str]:
    token = get_settings().api_token
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


def save_receipt(client, extracted: dict[str, Any], user_id: str = "user-1", **options: Any) -> dict[str, Any]:
    response = client.post(
        "/receipts",
        json={"user_id": user_id, "extracted": extracted, **options},
        headers=auth_headers(),
    )
    assert response.status_code == 201, response.text
    return response.json()
