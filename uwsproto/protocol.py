"""WebSocket frame formatting and an incremental frame parser."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Protocol

ERR_TOO_BIG_MESSAGE = "Received too big message"
ERR_WEBSOCKET_TIMEOUT = "WebSocket timed out from inactivity"
ERR_INVALID_TEXT = "Received invalid UTF-8"
ERR_TOO_BIG_MESSAGE_INFLATION = "Received too big message, or other inflation error"
ERR_INVALID_CLOSE_PAYLOAD = "Received invalid close payload"

SND_CONTINUATION = 1
SND_NO_FIN = 2
SND_COMPRESSED = 64

_NULL_MASK = b"\x00\x00\x00\x00"


class OpCode(IntEnum):
    CONTINUATION = 0
    TEXT = 1
    BINARY = 2
    CLOSE = 8
    PING = 9
    PONG = 10


@dataclass(frozen=True)
class CloseFrame:
    """A parsed close frame: status code and message bytes."""

    code: int
    message: bytes = b""


@dataclass
class WebSocketState:
    """Parser state carried between calls to FrameParser.consume."""

    wants_head: bool = True
    spill: bytes = b""
    op_stack: list[OpCode] = field(default_factory=list)
    last_fin: bool = True
    remaining_bytes: int = 0
    mask: bytes = _NULL_MASK


class FrameHandler(Protocol):
    """Callbacks a FrameParser drives."""

    def set_compressed(self, state: WebSocketState) -> bool: ...

    def force_close(self, state: WebSocketState, reason: str = "") -> None: ...

    def refuse_payload_length(self, length: int, state: WebSocketState) -> bool: ...

    def handle_fragment(
        self,
        data: bytes,
        remaining_bytes: int,
        op_code: OpCode,
        fin: bool,
        state: WebSocketState,
    ) -> bool: ...


def is_valid_utf8(data: bytes) -> bool:
    """Return True if data is strict UTF-8 (no overlongs, surrogates or values past U+10FFFF)."""
    try:
        bytes(data).decode("utf-8", errors="strict")
    except UnicodeDecodeError:
        return False
    return True


def parse_close_payload(data: bytes) -> CloseFrame:
    """Parse the payload of a close frame, reporting 1005 or 1006 as the protocol demands."""
    data = bytes(data)
    if len(data) < 2:
        return CloseFrame(1005)
    code = int.from_bytes(data[:2], "big")
    message = data[2:]
    if (
        code < 1000
        or code > 4999
        or 1011 < code < 4000
        or 1004 <= code <= 1006
        or not is_valid_utf8(message)
    ):
        return CloseFrame(1006)
    return CloseFrame(code, message)


def format_close_payload(code: int, message: bytes = b"") -> bytes:
    """Build a close payload; codes 0, 1005 and 1006 are never sent and give an empty payload."""
    if code and code not in (1005, 1006):
        return code.to_bytes(2, "big") + bytes(message)
    return b""


def message_frame_size(message_size: int) -> int:
    """Size of an unmasked frame carrying message_size bytes."""
    if message_size < 126:
        return 2 + message_size
    if message_size <= 0xFFFF:
        return 4 + message_size
    return 10 + message_size


def _apply_mask(data: bytes, mask: bytes) -> bytes:
    size = len(data)
    if not size or mask == _NULL_MASK:
        return bytes(data)
    repeated = (mask * (size // 4 + 1))[:size]
    return (int.from_bytes(data, "big") ^ int.from_bytes(repeated, "big")).to_bytes(size, "big")


def _rotate_mask(mask: bytes, consumed: int) -> bytes:
    shift = consumed % 4
    return mask[shift:] + mask[:shift]


def format_message(
    payload: bytes,
    op_code: OpCode,
    reported_length: int | None = None,
    compressed: bool = False,
    fin: bool = True,
    is_server: bool = True,
) -> bytes:
    """Frame payload; frames sent by a client are masked with a random key."""
    payload = bytes(payload)
    if reported_length is None:
        reported_length = len(payload)

    op_code = int(op_code)
    first = (0x80 if fin else 0) | (SND_COMPRESSED if compressed and op_code else 0) | op_code
    mask_bit = 0 if is_server else 0x80

    if reported_length < 126:
        header = bytes([first, reported_length | mask_bit])
    elif reported_length <= 0xFFFF:
        header = bytes([first, 126 | mask_bit]) + reported_length.to_bytes(2, "big")
    else:
        header = bytes([first, 127 | mask_bit]) + reported_length.to_bytes(8, "big")

    if is_server:
        return header + payload
    mask = os.urandom(4)
    return header + mask + _apply_mask(payload, mask)


class FrameParser:
    """Incremental parser feeding frame fragments to a handler."""

    def __init__(self, handler: FrameHandler, is_server: bool = True) -> None:
        self.handler = handler
        self.is_server = is_server
        self.state = WebSocketState()
        extra = 4 if is_server else 0
        self.short_header = 2 + extra
        self.medium_header = 4 + extra
        self.long_header = 10 + extra

    def consume(self, data: bytes) -> None:
        """Feed received bytes to the parser."""
        state = self.state
        buf = state.spill + bytes(data) if state.spill else bytes(data)
        state.spill = b""
        pos = 0
        if not state.wants_head:
            resume, pos = self._consume_continuation(buf, pos)
            if not resume:
                return
        self._parse_frames(buf, pos)

    def _parse_frames(self, buf: bytes, pos: int) -> None:
        state = self.state
        handler = self.handler
        while len(buf) - pos >= self.short_header:
            first, second = buf[pos], buf[pos + 1]
            op_code = first & 0x0F
            fin = bool(first & 0x80)
            short_length = second & 0x7F

            if (
                (first & 0x40 and not handler.set_compressed(state))
                or first & 0x30
                or 2 < op_code < 8
                or op_code > 10
                or (op_code > 2 and (not fin or short_length > 125))
            ):
                handler.force_close(state, "")
                return

            available = len(buf) - pos
            if short_length < 126:
                header = self.short_header
                length = short_length
            elif short_length == 126:
                if available < self.medium_header:
                    break
                header = self.medium_header
                length = int.from_bytes(buf[pos + 2:pos + 4], "big")
            else:
                if available < self.long_header:
                    break
                header = self.long_header
                length = int.from_bytes(buf[pos + 2:pos + 10], "big")

            stop, pos = self._consume_message(header, length, buf, pos)
            if stop:
                return

        state.spill = buf[pos:]

    def _consume_message(self, header: int, length: int, buf: bytes, pos: int) -> tuple[bool, int]:
        state = self.state
        handler = self.handler
        first = buf[pos]
        op_code = first & 0x0F
        fin = bool(first & 0x80)

        if op_code:
            if len(state.op_stack) == 2 or (not state.last_fin and op_code < 2):
                handler.force_close(state, "")
                return True, pos
            state.op_stack.append(OpCode(op_code))
        elif not state.op_stack:
            handler.force_close(state, "")
            return True, pos
        state.last_fin = fin

        if handler.refuse_payload_length(length, state):
            handler.force_close(state, ERR_TOO_BIG_MESSAGE)
            return True, pos

        start = pos + header
        mask = buf[start - 4:start] if self.is_server else _NULL_MASK
        available = len(buf) - pos

        if length + header <= available:
            payload = _apply_mask(buf[start:start + length], mask)
            if handler.handle_fragment(payload, 0, state.op_stack[-1], fin, state):
                return True, pos
            if fin:
                state.op_stack.pop()
            return False, start + length

        state.wants_head = False
        state.remaining_bytes = length - (available - header)
        partial = buf[start:]
        if self.is_server:
            partial = _apply_mask(partial, mask)
            state.mask = _rotate_mask(mask, len(partial))
        handler.handle_fragment(partial, state.remaining_bytes, state.op_stack[-1], fin, state)
        return True, len(buf)

    def _consume_continuation(self, buf: bytes, pos: int) -> tuple[bool, int]:
        state = self.state
        handler = self.handler
        available = len(buf) - pos

        if state.remaining_bytes <= available:
            end = pos + state.remaining_bytes
            chunk = buf[pos:end]
            if self.is_server:
                chunk = _apply_mask(chunk, state.mask)
            if handler.handle_fragment(chunk, 0, state.op_stack[-1], state.last_fin, state):
                return False, pos
            if state.last_fin:
                state.op_stack.pop()
            state.remaining_bytes = 0
            state.wants_head = True
            return True, end

        chunk = buf[pos:]
        if self.is_server:
            chunk = _apply_mask(chunk, state.mask)
        state.remaining_bytes -= available
        if handler.handle_fragment(chunk, state.remaining_bytes, state.op_stack[-1], state.last_fin, state):
            return False, len(buf)
        if self.is_server and available % 4:
            state.mask = _rotate_mask(state.mask, available)
        return False, len(buf)