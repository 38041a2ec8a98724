"""Starlette/FastAPI binding for the response adapter."""

from __future__ import annotations

from typing import Mapping

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response


def client_host_key(request: Request) -> str:
    """Default key function: the caller's network address."""
    return request.client.host if request.client else "unknown"


class StarletteResponseAdapter:
    """Collects status, body and headers until a response exists.

    Headers set before the downstream response is produced are replayed onto
    it by ``apply_headers``; a rejection is materialized by ``build_response``.
    """

    def __init__(self) -> None:
        self.status_code: int | None = None
        self.body: str | None = None
        self.headers: dict[str, str] = {}

    def set_status(self, status_code: int) -> None:
        self.status_code = status_code

    def set_body(self, body: str) -> None:
        self.body = body

    def set_headers(self, headers: Mapping[str, str]) -> None:
        self.headers.update(headers)

    @property
    def has_response(self) -> bool:
        return self.status_code is not None

    def apply_headers(self, response: Response) -> Response:
        for name, value in self.headers.items():
            response.headers[name] = value
        return response

    def build_response(self) -> Response:
        return PlainTextResponse(
            self.body or "",
            status_code=self.status_code or 200,
            headers=self.headers or None,
        )
