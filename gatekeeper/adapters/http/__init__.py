"""HTTP framework bindings for the admission layer."""

from gatekeeper.adapters.http.base import ResponseAdapter
from gatekeeper.adapters.http.starlette import StarletteResponseAdapter, client_host_key

__all__ = ["ResponseAdapter", "StarletteResponseAdapter", "client_host_key"]
