"""Wire format of the runtime service.

Requests and responses are single-line JSON objects terminated by a newline.
"""

import re
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict

ANNOUNCEMENT_MARKER = "hotloop runtime service listening on "
"""Text the child prints to stdout, followed by the service address."""

_ADDRESS_RE = re.compile(r"^tcp://(?P<host>[^:/\s]+|\[[0-9a-fA-F:]+\]):(?P<port>\d+)/?$")

MAX_MESSAGE_BYTES = 64 * 1024

RuntimeMethod = Literal["context", "reload", "ping"]


class RuntimeRequest(BaseModel):
    """A request sent to the runtime service."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    id: int
    method: RuntimeMethod
    context: str | None = None


class RuntimeResponse(BaseModel):
    """A response from the runtime service."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    id: int
    success: bool
    context: str | None = None
    detail: str | None = None
    reloaded: tuple[str, ...] = ()


def format_announcement(host: str, port: int) -> str:
    """Return the announcement line for a service address."""
    return f"{ANNOUNCEMENT_MARKER}tcp://{host}:{port}/"


def parse_announcement(line: str) -> str | None:
    """Extract the service address from an output line.

    Args:
        line: A line of child output.

    Returns:
        The address following the marker, or None if the line carries none.
    """
    index = line.find(ANNOUNCEMENT_MARKER)
    if index == -1:
        return None
    address = line[index + len(ANNOUNCEMENT_MARKER) :].strip()
    return address or None


def split_address(address: str) -> tuple[str, int]:
    """Split a ``tcp://host:port/`` address into host and port.

    Raises:
        ValueError: If the address is malformed.
    """
    match = _ADDRESS_RE.match(address.strip())
    if match is None:
        msg = f"Invalid runtime service address: {address!r}"
        raise ValueError(msg)
    return match["host"].strip("[]"), int(match["port"])


def encode(message: BaseModel) -> bytes:
    """Encode a request or response as one newline-terminated line."""
    return message.model_dump_json().encode("utf-8") + b"\n"
