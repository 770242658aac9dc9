"""Input sanitization, model validation and rate limiting.

``validate(model_cls, data)`` is the single entry point used by the store and
the application context to turn loosely-typed input into one of the pydantic
models in :mod:`bankrec.models`. Pydantic already collects every failing field;
this module reshapes those failures into a :class:`bankrec.errors.ValidationError`
whose message enumerates all of them.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Mapping
from os import PathLike
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

M = TypeVar("M", bound=BaseModel)

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254


def sanitize_string(value: str, max_length: int = 1000) -> str:
    """Drop NUL/control characters, trim, and cap the length."""

    return _CONTROL_CHARS_RE.sub("", value).strip()[:max_length]


def is_valid_email(email: str) -> bool:
    return (
        isinstance(email, str)
        and len(email) <= MAX_EMAIL_LENGTH
        and _EMAIL_RE.fullmatch(email) is not None
    )


def _format_error(err: Mapping[str, Any]) -> str:
    msg = str(err.get("msg", "invalid value"))
    # Messages from our own validators arrive as "Value error, <text>".
    msg = msg.removeprefix("Value error, ")
    loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
    return f"{loc}: {msg}" if loc else msg


def validate(model_cls: type[M], data: M | Mapping[str, Any]) -> M:
    """Return ``data`` as ``model_cls``; raise ``ValidationError`` listing all problems."""

    if isinstance(data, model_cls):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    if not isinstance(data, Mapping):
        raise ValidationError(f"Invalid {model_cls.__name__} data")
    try:
        return model_cls.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise ValidationError([_format_error(e) for e in exc.errors()]) from exc


def validate_file_path(path: str | PathLike[str]) -> str:
    """Reject empty paths, NUL bytes and ``..`` traversal segments."""

    if path is None:
        raise ValidationError("Invalid file path")
    raw = str(path)
    if not raw.strip():
        raise ValidationError("Invalid file path")
    if ".." in raw or "\0" in raw:
        raise ValidationError("Invalid file path: directory traversal detected")
    return sanitize_string(raw, 1000)


class RateLimiter:
    """Sliding-window limiter: at most ``max_attempts`` per ``window_seconds`` per key.

    Rejected attempts are not recorded, so a rejection has no side effects.
    """

    def __init__(
        self,
        max_attempts: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: dict[str, list[float]] = {}

    def check(self, key: str) -> bool:
        now = self._clock()
        recent = [t for t in self._attempts.get(key, []) if now - t < self.window_seconds]
        if len(recent) >= self.max_attempts:
            self._attempts[key] = recent
            return False
        recent.append(now)
        self._attempts[key] = recent
        return True

    def reset(self, key: str) -> None:
        self._attempts.pop(key, None)


__all__ = [
    "MAX_EMAIL_LENGTH",
    "RateLimiter",
    "is_valid_email",
    "sanitize_string",
    "validate",
    "validate_file_path",
]
