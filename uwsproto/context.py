"""Event handling for the WebSocket connections of one context."""

from __future__ import annotations

from typing import Optional, Protocol

from uwsproto.context_data import CompressionStatus, ContextData, Inflater, WebSocketData
from uwsproto.protocol import (
    ERR_INVALID_TEXT,
    ERR_TOO_BIG_MESSAGE,
    ERR_TOO_BIG_MESSAGE_INFLATION,
    ERR_WEBSOCKET_TIMEOUT,
    FrameParser,
    OpCode,
    WebSocketState,
    is_valid_utf8,
    parse_close_payload,
)

_PING_FRAME = b"\x89\x00"


class WebSocketSocket(Protocol):
    """The transport a WebSocketContext drives for one connection."""

    data: WebSocketData

    def close(self, reason: bytes) -> None: ...

    def is_closed(self) -> bool: ...

    def is_shut_down(self) -> bool: ...

    def set_timeout(self, seconds: int) -> None: ...

    def cork(self) -> None: ...

    def uncork(self) -> None: ...

    def buffered_amount(self) -> int: ...

    def write(self, data: bytes) -> int: ...

    def shutdown(self) -> None: ...

    def send(self, message: bytes, op_code: OpCode) -> None: ...

    def end(self, code: int, message: bytes) -> None: ...


class _BoundHandler:
    """Frame handler that ties parser callbacks to one socket."""

    def __init__(self, context: "WebSocketContext", socket: WebSocketSocket) -> None:
        self._context = context
        self._socket = socket

    def set_compressed(self, state: WebSocketState) -> bool:
        return self._context.set_compressed(state, self._socket)

    def force_close(self, state: WebSocketState, reason: str = "") -> None:
        self._context.force_close(state, self._socket, reason)

    def refuse_payload_length(self, length: int, state: WebSocketState) -> bool:
        return self._context.refuse_payload_length(length, state, self._socket)

    def handle_fragment(
        self, data: bytes, remaining_bytes: int, op_code: OpCode, fin: bool, state: WebSocketState
    ) -> bool:
        return self._context.handle_fragment(data, remaining_bytes, op_code, fin, state, self._socket)


class WebSocketContext:
    """Reacts to socket events, parsing frames and emitting the context's callbacks."""

    def __init__(self, data: ContextData, is_server: bool = True) -> None:
        self.data = data
        self.is_server = is_server
        self.inflater = Inflater()

    def _gone(self, socket: WebSocketSocket) -> bool:
        return socket.is_closed() or socket.data.is_shutting_down

    def set_compressed(self, state: Optional[WebSocketState], socket: WebSocketSocket) -> bool:
        """Mark the current frame compressed if compression was negotiated."""
        ws = socket.data
        if ws.compression_status is CompressionStatus.ENABLED:
            ws.compression_status = CompressionStatus.COMPRESSED_FRAME
            return True
        return False

    def force_close(self, state: Optional[WebSocketState], socket: WebSocketSocket, reason: str = "") -> None:
        """Close the socket at once with the given reason."""
        socket.close(reason.encode("utf-8"))

    def refuse_payload_length(self, length: int, state: Optional[WebSocketState], socket: WebSocketSocket) -> bool:
        """True if a payload of this length exceeds the context's limit."""
        return self.data.max_payload_length < length

    def _inflate(self, ws: WebSocketData, payload: bytes) -> Optional[bytes]:
        ws.compression_status = CompressionStatus.ENABLED
        if ws.inflation_stream is not None:
            return ws.inflation_stream.inflate(payload, self.data.max_payload_length, False)
        return self.inflater.inflate(payload, self.data.max_payload_length, True)

    def _emit_message(self, socket: WebSocketSocket, state, payload: bytes, op_code: OpCode) -> bool:
        if op_code == OpCode.TEXT and not is_valid_utf8(payload):
            self.force_close(state, socket, ERR_INVALID_TEXT)
            return True
        handler = self.data.message_handler
        if handler is not None:
            handler(socket, payload, OpCode(op_code))
            if self._gone(socket):
                return True
        return False

    def _emit_control(self, socket: WebSocketSocket, payload: bytes, op_code: OpCode) -> bool:
        if op_code == OpCode.CLOSE:
            frame = parse_close_payload(payload)
            socket.end(frame.code, frame.message)
            return True
        if op_code == OpCode.PING:
            socket.send(payload, OpCode.PONG)
            handler = self.data.ping_handler
        elif op_code == OpCode.PONG:
            handler = self.data.pong_handler
        else:
            return False
        if handler is not None:
            handler(socket, payload)
            if self._gone(socket):
                return True
        return False

    def handle_fragment(
        self,
        data: bytes,
        remaining_bytes: int,
        op_code: OpCode,
        fin: bool,
        state: Optional[WebSocketState],
        socket: WebSocketSocket,
    ) -> bool:
        """Handle one piece of a frame's payload; True if the socket broke or closed."""
        ws = socket.data
        data = bytes(data)

        if op_code < 3:
            if not remaining_bytes and fin and not ws.fragment_buffer:
                if ws.compression_status is CompressionStatus.COMPRESSED_FRAME:
                    inflated = self._inflate(ws, data)
                    if inflated is None:
                        self.force_close(state, socket, ERR_TOO_BIG_MESSAGE_INFLATION)
                        return True
                    data = inflated
                return self._emit_message(socket, state, data, op_code)

            if self.refuse_payload_length(len(data) + len(ws.fragment_buffer), state, socket):
                self.force_close(state, socket, ERR_TOO_BIG_MESSAGE)
                return True
            ws.fragment_buffer += data

            if not remaining_bytes and fin:
                message = bytes(ws.fragment_buffer)
                if ws.compression_status is CompressionStatus.COMPRESSED_FRAME:
                    inflated = self._inflate(ws, message)
                    if inflated is None:
                        self.force_close(state, socket, ERR_TOO_BIG_MESSAGE_INFLATION)
                        return True
                    message = inflated
                if self._emit_message(socket, state, message, op_code):
                    return True
                ws.fragment_buffer.clear()
            return False

        if not remaining_bytes and fin and not ws.control_tip_length:
            return self._emit_control(socket, data, op_code)

        ws.fragment_buffer += data
        ws.control_tip_length += len(data)
        if not remaining_bytes and fin:
            tip = ws.control_tip_length
            control = bytes(ws.fragment_buffer[len(ws.fragment_buffer) - tip:])
            if self._emit_control(socket, control, op_code):
                return True
            del ws.fragment_buffer[len(ws.fragment_buffer) - tip:]
            ws.control_tip_length = 0
        return False

    def on_data(self, socket: WebSocketSocket, data: bytes) -> None:
        """Parse received bytes, corked, and finish a pending shutdown if drained."""
        ws = socket.data
        if ws.is_shutting_down:
            return
        socket.set_timeout(self.data.idle_timeout_components[0])
        ws.has_timed_out = False
        socket.cork()
        parser = FrameParser(_BoundHandler(self, socket), self.is_server)
        parser.state = ws.state
        parser.consume(data)
        socket.uncork()
        if socket.buffered_amount() == 0 and ws.is_shutting_down:
            socket.shutdown()

    def on_writable(self, socket: WebSocketSocket) -> None:
        """Drain backpressure, then shut down or emit drain as appropriate."""
        if socket.is_shut_down():
            return
        ws = socket.data
        backpressure = socket.buffered_amount()
        socket.write(b"")
        drained = not backpressure or backpressure > socket.buffered_amount()
        if drained:
            socket.set_timeout(self.data.idle_timeout_components[0])
            ws.has_timed_out = False
        if ws.is_shutting_down:
            if socket.buffered_amount() == 0:
                socket.shutdown()
        elif drained and self.data.drain_handler is not None:
            self.data.drain_handler(socket)

    def on_end(self, socket: WebSocketSocket) -> None:
        """A FIN from the peer closes the socket."""
        socket.close(b"")

    def on_close(self, socket: WebSocketSocket, code: int, reason: bytes) -> None:
        """Emit unsubscription and close events unless a close was already emitted.

        code is the length of reason, as reported by the transport.
        """
        ws = socket.data
        if not ws.is_shutting_down:
            subscriber = ws.subscriber
            if subscriber is not None and self.data.subscription_handler is not None:
                for topic in subscriber.topics:
                    size = len(topic)
                    self.data.subscription_handler(socket, topic.name, size - 1, size)
            if subscriber is not None and self.data.topic_tree is not None:
                self.data.topic_tree.free_subscriber(subscriber)
            ws.subscriber = None
            if self.data.close_handler is not None:
                self.data.close_handler(socket, 1006, bytes(reason or b"")[:code])

    def on_timeout(self, socket: WebSocketSocket) -> None:
        """Send an automatic ping on first idle timeout, otherwise close."""
        ws = socket.data
        if self.data.send_pings_automatically and not ws.is_shutting_down and not ws.has_timed_out:
            ws.has_timed_out = True
            socket.set_timeout(self.data.idle_timeout_components[1])
            socket.write(_PING_FRAME)
            return
        self.force_close(None, socket, ERR_WEBSOCKET_TIMEOUT)

    def on_long_timeout(self, socket: WebSocketSocket) -> None:
        """The connection reached its maximum lifetime."""
        socket.end(1000, b"please reconnect")