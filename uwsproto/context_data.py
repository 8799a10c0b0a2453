"""Per-context settings and per-connection state of WebSocket connections."""

from __future__ import annotations

import zlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from uwsproto.protocol import WebSocketState

_DEFLATE_TAIL = b"\x00\x00\xff\xff"
_RAW_WINDOW_BITS = -15


@dataclass
class TopicTreeMessage:
    """A message queued for publishing to a topic."""

    message: bytes
    op_code: int
    compress: bool = False


class CompressionStatus(Enum):
    DISABLED = 0
    ENABLED = 1
    COMPRESSED_FRAME = 2


class Inflater:
    """Raw-deflate decompressor for permessage-deflate payloads."""

    def __init__(self) -> None:
        self._stream = zlib.decompressobj(_RAW_WINDOW_BITS)

    def inflate(self, data: bytes, max_payload_length: int, reset: bool = False) -> Optional[bytes]:
        """Inflate one message; None if it is too big or corrupt.

        With reset the sliding window starts empty, as for a shared decompressor;
        otherwise the window carries over from earlier messages.
        """
        if reset:
            self._stream = zlib.decompressobj(_RAW_WINDOW_BITS)
        try:
            inflated = self._stream.decompress(bytes(data) + _DEFLATE_TAIL, max_payload_length + 1)
        except zlib.error:
            return None
        if len(inflated) > max_payload_length:
            return None
        return inflated


Handler = Optional[Callable[..., Any]]


@dataclass
class ContextData:
    """Callbacks and settings shared by every WebSocket of one context."""

    topic_tree: Any = None
    open_handler: Handler = None
    message_handler: Handler = None
    drain_handler: Handler = None
    subscription_handler: Handler = None
    close_handler: Handler = None
    ping_handler: Handler = None
    pong_handler: Handler = None
    max_payload_length: int = 0
    compression: int = 0
    max_backpressure: int = 0
    close_on_backpressure_limit: bool = False
    reset_idle_timeout_on_send: bool = False
    send_pings_automatically: bool = False
    max_lifetime: int = 0
    idle_timeout_components: tuple[int, int] = (0, 0)

    def calculate_idle_timeout_components(self, idle_timeout: int) -> tuple[int, int]:
        """Split idle_timeout into the normal timeout and a 4, 8 or 16 second ping margin."""
        margin = 4
        while idle_timeout - margin * 2 >= margin * 2 and margin < 16:
            margin <<= 1
        reduced = idle_timeout - (margin if self.send_pings_automatically else 0)
        self.idle_timeout_components = (reduced & 0xFFFF, margin)
        return self.idle_timeout_components


class WebSocketData:
    """State of one WebSocket connection."""

    def __init__(
        self,
        per_message_deflate: bool = False,
        dedicated_compressor: bool = False,
        dedicated_decompressor: bool = False,
    ) -> None:
        self.state = WebSocketState()
        self.fragment_buffer = bytearray()
        self.control_tip_length = 0
        self.is_shutting_down = False
        self.has_timed_out = False
        self.compression_status = (
            CompressionStatus.ENABLED if per_message_deflate else CompressionStatus.DISABLED
        )
        self.deflation_stream: Any = None
        self.inflation_stream: Optional[Inflater] = None
        self.subscriber: Any = None
        self.buffered = bytearray()

        if per_message_deflate:
            if dedicated_compressor:
                self.deflation_stream = zlib.compressobj(wbits=_RAW_WINDOW_BITS)
            if dedicated_decompressor:
                self.inflation_stream = Inflater()