"""Drain error type and helpers for rendering store failures."""

from fastapi import Request
from fastapi.responses import JSONResponse


class DrainError(Exception):
    """A request-terminating failure rendered as {"error", "code", "details"}."""

    def __init__(
        self,
        status_code: int,
        error: str,
        code: str | None = None,
        details: str | None = None,
    ):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.code = code
        self.details = details

    def to_body(self) -> dict:
        body: dict = {"error": self.error}
        if self.code:
            body["code"] = self.code
        if self.details is not None:
            body["details"] = self.details
        return body


async def drain_error_handler(request: Request, exc: DrainError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def describe_store_error(exc: BaseException) -> str | None:
    """Extract a readable cause from a store exception.

    Walks the ``__cause__`` chain so a wrapped driver error still reports
    its own message. Falls back to the SQLSTATE code when the message is
    empty, and returns None when nothing useful is available.
    """
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        message = str(current).strip()
        if message:
            return message
        sqlstate = getattr(current, "sqlstate", None)
        if sqlstate:
            return f"SQLSTATE {sqlstate}"
        current = current.__cause__
    return None
