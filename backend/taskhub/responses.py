"""Uniform REST envelope: ``{"success": true, "data": ...}`` on success.

Failures are produced by the exception handlers in ``taskhub.main``.
"""
from typing import Any, Dict

from pydantic import BaseModel


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def success(data: Any = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": _plain(data)}
    body.update({k: _plain(v) for k, v in extra.items()})
    return body


def failure(message: str) -> Dict[str, Any]:
    return {"success": False, "error": message}
