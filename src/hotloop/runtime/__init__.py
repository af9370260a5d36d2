"""Child-side live-patch runtime.

Key Components:
    - RuntimeService: Loopback TCP service answering context/reload/ping
    - ModuleReloader: Re-imports changed modules in place
    - RuntimeRequest / RuntimeResponse: Wire models shared with the client
"""

from ._reloader import ModuleReloader
from ._service import RuntimeService, current_context_id
from ._wire import (
    ANNOUNCEMENT_MARKER,
    RuntimeRequest,
    RuntimeResponse,
    format_announcement,
    parse_announcement,
    split_address,
)

__all__ = [
    "ANNOUNCEMENT_MARKER",
    "ModuleReloader",
    "RuntimeRequest",
    "RuntimeResponse",
    "RuntimeService",
    "current_context_id",
    "format_announcement",
    "parse_announcement",
    "split_address",
]
