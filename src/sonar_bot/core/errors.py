"""Operational error types raised by the security gate and the upstream client.

Every error here is expected and user-facing: the message handler catches them
once and turns them into a reply, the admin API turns them into JSON bodies.
"""

from __future__ import annotations

from typing import Optional


class BotError(Exception):
    """Base class for operational errors carrying a stable code and HTTP status."""

    code: str = "error"
    status_code: int = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class RateLimitedError(BotError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str, *, ms_before_next: int = 0) -> None:
        super().__init__(message)
        self.ms_before_next = ms_before_next


class NotWhitelistedError(BotError):
    code = "not_whitelisted"
    status_code = 403


class ForbiddenError(BotError):
    code = "forbidden"
    status_code = 403


class InvalidInputError(BotError):
    code = "invalid_input"
    status_code = 400


class UnauthorizedError(BotError):
    """The upstream API rejected our credentials."""

    code = "unauthorized"
    status_code = 401


class ApiError(BotError):
    code = "api_error"
    status_code = 500


class ApiRateLimitedError(ApiError):
    code = "api_rate_limited"
    status_code = 429


class ApiTimeoutError(ApiError):
    code = "api_timeout"
    status_code = 504
