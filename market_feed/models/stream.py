from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


def now_ms() -> int:
    return int(time.time() * 1000)


class StreamError(BaseModel):
    """
    Error reported by a stream transport or a subscription session.

    code:
      - PARSE_ERROR: inbound frame was not valid JSON
      - CONNECTION_ERROR: connection could not be established
      - CREATE_ERROR: connection object could not be constructed (bad URL etc.)
      - CLOSE_<code>: open connection closed unexpectedly
      - PROCESS_ERROR: a session failed while handling a message
      - SEED_ERROR: historical seed fetch failed

    timestamp:
      epoch milliseconds when the error was reported
    """

    message: str
    code: str
    timestamp: int = Field(default_factory=now_ms)
