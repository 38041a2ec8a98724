"""Response adapter interface.

The admission layer only needs three capabilities from a web framework's
response: set a status, set a body and set headers. Bindings implement this
protocol so the core never depends on a framework's response shape.
"""

from __future__ import annotations

from typing import Mapping, Protocol, runtime_checkable


@runtime_checkable
class ResponseAdapter(Protocol):
    """Minimal response surface used by the admission layer."""

    def set_status(self, status_code: int) -> None: ...

    def set_body(self, body: str) -> None: ...

    def set_headers(self, headers: Mapping[str, str]) -> None: ...
