"""Static classification of routes into public and protected."""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class RouteClass(StrEnum):
    PUBLIC = "public"
    PROTECTED = "protected"


DEFAULT_PUBLIC_PATHS = frozenset({"/", "/health", "/login-start", "/login-callback"})
LOGIN_ENTRY_PATH = "/login-start"


class RoutePolicy:
    """Anything not listed as public is protected."""

    def __init__(self, public_paths: Iterable[str] = DEFAULT_PUBLIC_PATHS) -> None:
        self.public_paths = frozenset(_normalize(p) for p in public_paths)

    def classify(self, path: str) -> RouteClass:
        if _normalize(path) in self.public_paths:
            return RouteClass.PUBLIC
        return RouteClass.PROTECTED


def _normalize(path: str) -> str:
    if len(path) > 1:
        return path.rstrip("/") or "/"
    return path or "/"


__all__ = ["DEFAULT_PUBLIC_PATHS", "LOGIN_ENTRY_PATH", "RouteClass", "RoutePolicy"]
