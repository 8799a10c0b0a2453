import zlib

import pytest

from uwsproto.context import WebSocketContext
from uwsproto.context_data import CompressionStatus, ContextData, WebSocketData
from uwsproto.protocol import (
    ERR_INVALID_TEXT,
    ERR_TOO_BIG_MESSAGE,
    ERR_TOO_BIG_MESSAGE_INFLATION,
    ERR_WEBSOCKET_TIMEOUT,
    OpCode,
    format_close_payload,
    format_message,
)


class FakeSocket:
    def __init__(self, data=None):
        self.data = data or WebSocketData()
        self.closed = False
        self.close_reason = None
        self.shut_down = False
        self.timeouts = []
        self.corks = 0
        self.uncorks = 0
        self.pending = 0
        self.written = []
        self.sent = []
        self.ended = None

    def close(self, reason):
        self.closed = True
        self.close_reason = reason

    def is_closed(self):
        return self.closed

    def is_shut_down(self):
        return self.shut_down

    def set_timeout(self, seconds):
        self.timeouts.append(seconds)

    def cork(self):
        self.corks += 1

    def uncork(self):
        self.uncorks += 1

    def buffered_amount(self):
        return self.pending

    def write(self, data):
        self.written.append(data)
        self.pending = 0
        return len(data)

    def shutdown(self):
        self.shut_down = True

    def send(self, message, op_code):
        self.sent.append((message, op_code))

    def end(self, code, message):
        self.ended = (code, message)
        self.data.is_shutting_down = True


def make(max_payload=1024, **kwargs):
    messages = []
    data = ContextData(max_payload_length=max_payload, **kwargs)
    data.message_handler = lambda s, m, op: messages.append((m, op))
    return WebSocketContext(data), messages


def client_frame(payload, op, **kwargs):
    return format_message(payload, op, is_server=False, **kwargs)


def test_text_message_delivered():
    ctx, messages = make()
    sock = FakeSocket()
    ctx.on_data(sock, client_frame(b"hello", OpCode.TEXT))
    assert messages == [(b"hello", OpCode.TEXT)]
    assert sock.corks == 1 and sock.uncorks == 1
    assert sock.closed is False


def test_on_data_resets_timeout_to_first_component():
    ctx, _ = make(send_pings_automatically=True)
    ctx.data.calculate_idle_timeout_components(120)
    sock = FakeSocket()
    sock.data.has_timed_out = True
    ctx.on_data(sock, client_frame(b"x", OpCode.BINARY))
    assert sock.timeouts == [ctx.data.idle_timeout_components[0]]
    assert sock.data.has_timed_out is False


def test_invalid_utf8_closes():
    ctx, messages = make()
    sock = FakeSocket()
    ctx.on_data(sock, client_frame(b"\xff\xfe", OpCode.TEXT))
    assert messages == []
    assert sock.close_reason == ERR_INVALID_TEXT.encode()


def test_fragmented_message_is_joined():
    ctx, messages = make()
    sock = FakeSocket()
    stream = client_frame(b"hel", OpCode.TEXT, fin=False) + client_frame(b"lo", OpCode.CONTINUATION)
    ctx.on_data(sock, stream)
    assert messages == [(b"hello", OpCode.TEXT)]
    assert len(sock.data.fragment_buffer) == 0


@pytest.mark.parametrize("split", [1, 3, 6, 9, 15])
def test_frame_split_across_reads(split):
    ctx, messages = make()
    sock = FakeSocket()
    payload = b"abcdefghij"
    frame = client_frame(payload, OpCode.BINARY)
    ctx.on_data(sock, frame[:split])
    ctx.on_data(sock, frame[split:])
    assert messages == [(payload, OpCode.BINARY)]


def test_too_big_message_closes():
    ctx, messages = make(max_payload=3)
    sock = FakeSocket()
    ctx.on_data(sock, client_frame(b"abcdefghij", OpCode.BINARY))
    assert messages == []
    assert sock.close_reason == ERR_TOO_BIG_MESSAGE.encode()


def test_ping_answered_with_pong_and_handler():
    ctx, _ = make()
    pings = []
    ctx.data.ping_handler = lambda s, p: pings.append(p)
    sock = FakeSocket()
    ctx.on_data(sock, client_frame(b"ping!", OpCode.PING))
    assert sock.sent == [(b"ping!", OpCode.PONG)]
    assert pings == [b"ping!"]


def test_ping_between_fragments():
    ctx, messages = make()
    sock = FakeSocket()
    stream = (
        client_frame(b"hel", OpCode.TEXT, fin=False)
        + client_frame(b"p", OpCode.PING)
        + client_frame(b"lo", OpCode.CONTINUATION)
    )
    ctx.on_data(sock, stream)
    assert sock.sent == [(b"p", OpCode.PONG)]
    assert messages == [(b"hello", OpCode.TEXT)]


def test_pong_handler():
    ctx, _ = make()
    pongs = []
    ctx.data.pong_handler = lambda s, p: pongs.append(p)
    sock = FakeSocket()
    ctx.on_data(sock, client_frame(b"abc", OpCode.PONG))
    assert pongs == [b"abc"]
    assert sock.sent == []


def test_close_frame_ends_and_shuts_down():
    ctx, _ = make()
    sock = FakeSocket()
    ctx.on_data(sock, client_frame(format_close_payload(1000, b"bye"), OpCode.CLOSE))
    assert sock.ended == (1000, b"bye")
    assert sock.shut_down is True


def test_empty_close_frame_reports_1005():
    ctx, _ = make()
    sock = FakeSocket()
    ctx.on_data(sock, client_frame(b"", OpCode.CLOSE))
    assert sock.ended == (1005, b"")


def test_data_ignored_while_shutting_down():
    ctx, messages = make()
    sock = FakeSocket()
    sock.data.is_shutting_down = True
    ctx.on_data(sock, client_frame(b"hello", OpCode.TEXT))
    assert messages == []
    assert sock.corks == 0


def _deflate(payload):
    compressor = zlib.compressobj(wbits=-15)
    out = compressor.compress(payload) + compressor.flush(zlib.Z_SYNC_FLUSH)
    assert out.endswith(b"\x00\x00\xff\xff")
    return out[:-4]


@pytest.mark.parametrize("dedicated", [False, True])
def test_compressed_message_inflated(dedicated):
    ctx, messages = make()
    sock = FakeSocket(WebSocketData(per_message_deflate=True, dedicated_decompressor=dedicated))
    payload = b"compress me " * 10
    ctx.on_data(sock, client_frame(_deflate(payload), OpCode.TEXT, compressed=True))
    assert messages == [(payload, OpCode.TEXT)]
    assert sock.data.compression_status is CompressionStatus.ENABLED


def test_compressed_fragments_inflated():
    ctx, messages = make()
    sock = FakeSocket(WebSocketData(per_message_deflate=True))
    payload = b"fragmented and compressed " * 5
    deflated = _deflate(payload)
    half = len(deflated) // 2
    stream = client_frame(deflated[:half], OpCode.BINARY, compressed=True, fin=False) + client_frame(
        deflated[half:], OpCode.CONTINUATION
    )
    ctx.on_data(sock, stream)
    assert messages == [(payload, OpCode.BINARY)]


def test_inflation_too_big_closes():
    ctx, messages = make(max_payload=20)
    sock = FakeSocket(WebSocketData(per_message_deflate=True))
    ctx.on_data(sock, client_frame(_deflate(b"a" * 500), OpCode.BINARY, compressed=True))
    assert messages == []
    assert sock.close_reason == ERR_TOO_BIG_MESSAGE_INFLATION.encode()


def test_compressed_frame_refused_without_negotiation():
    ctx, messages = make()
    sock = FakeSocket()
    ctx.on_data(sock, client_frame(_deflate(b"abc"), OpCode.TEXT, compressed=True))
    assert messages == []
    assert sock.closed is True


def test_set_compressed_and_refuse_payload_length():
    ctx, _ = make(max_payload=10)
    sock = FakeSocket(WebSocketData(per_message_deflate=True))
    assert ctx.set_compressed(None, sock) is True
    assert ctx.set_compressed(None, sock) is False
    assert ctx.refuse_payload_length(10, None, sock) is False
    assert ctx.refuse_payload_length(11, None, sock) is True


def test_timeout_sends_ping_then_closes():
    ctx, _ = make(send_pings_automatically=True)
    ctx.data.calculate_idle_timeout_components(120)
    sock = FakeSocket()
    ctx.on_timeout(sock)
    assert sock.written == [b"\x89\x00"]
    assert sock.data.has_timed_out is True
    assert sock.timeouts == [ctx.data.idle_timeout_components[1]]
    ctx.on_timeout(sock)
    assert sock.close_reason == ERR_WEBSOCKET_TIMEOUT.encode()


def test_timeout_without_pings_closes():
    ctx, _ = make()
    sock = FakeSocket()
    ctx.on_timeout(sock)
    assert sock.written == []
    assert sock.close_reason == ERR_WEBSOCKET_TIMEOUT.encode()


def test_long_timeout_ends():
    ctx, _ = make()
    sock = FakeSocket()
    ctx.on_long_timeout(sock)
    assert sock.ended == (1000, b"please reconnect")


def test_end_closes():
    ctx, _ = make()
    sock = FakeSocket()
    ctx.on_end(sock)
    assert sock.closed is True
    assert sock.close_reason == b""


def test_close_emits_1006_with_reason():
    ctx, _ = make()
    closes = []
    ctx.data.close_handler = lambda s, code, reason: closes.append((code, reason))
    sock = FakeSocket()
    ctx.on_close(sock, 4, b"gone")
    assert closes == [(1006, b"gone")]


def test_close_not_emitted_when_shutting_down():
    ctx, _ = make()
    closes = []
    ctx.data.close_handler = lambda s, code, reason: closes.append((code, reason))
    sock = FakeSocket()
    sock.data.is_shutting_down = True
    ctx.on_close(sock, 0, b"")
    assert closes == []


class _Topic:
    def __init__(self, name, size):
        self.name = name
        self._size = size

    def __len__(self):
        return self._size


class _Subscriber:
    def __init__(self, topics):
        self.topics = topics


class _Tree:
    def __init__(self):
        self.freed = []

    def free_subscriber(self, subscriber):
        self.freed.append(subscriber)


def test_close_unsubscribes_from_topics():
    tree = _Tree()
    ctx, _ = make(topic_tree=tree)
    events = []
    ctx.data.subscription_handler = lambda s, name, new, old: events.append((name, new, old))
    sock = FakeSocket()
    subscriber = _Subscriber([_Topic("a", 2), _Topic("b", 1)])
    sock.data.subscriber = subscriber
    ctx.on_close(sock, 0, b"")
    assert events == [("a", 1, 2), ("b", 0, 1)]
    assert tree.freed == [subscriber]
    assert sock.data.subscriber is None


def test_writable_emits_drain():
    ctx, _ = make()
    drains = []
    ctx.data.drain_handler = lambda s: drains.append(s)
    sock = FakeSocket()
    sock.pending = 5
    ctx.on_writable(sock)
    assert drains == [sock]
    assert len(sock.timeouts) == 1


def test_writable_shuts_down_when_drained_during_shutdown():
    ctx, _ = make()
    drains = []
    ctx.data.drain_handler = lambda s: drains.append(s)
    sock = FakeSocket()
    sock.data.is_shutting_down = True
    ctx.on_writable(sock)
    assert sock.shut_down is True
    assert drains == []


def test_writable_ignored_after_shutdown():
    ctx, _ = make()
    sock = FakeSocket()
    sock.shut_down = True
    ctx.on_writable(sock)
    assert sock.written == []
    assert sock.timeouts == []