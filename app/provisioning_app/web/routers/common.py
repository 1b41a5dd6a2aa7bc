from __future__ import annotations

from typing import Any

from fastapi import Request


async def read_json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValueError("Request body must be a JSON object.") from exc
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object.")
    return body


def body_text(body: dict[str, Any], key: str) -> str:
    return str(body.get(key) or "").strip()


def parse_limit(raw_limit: int | str | None, *, default: int, maximum: int) -> int:
    try:
        value = int(raw_limit or default)
    except (TypeError, ValueError):
        value = default
    return max(1, min(value, maximum))
