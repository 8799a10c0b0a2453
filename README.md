# uwsproto

The server side of the WebSocket protocol (RFC 6455) in plain Python,
with no third-party dependencies. It covers the wire format, the
opening handshake value, and the handling of connection events. It does
not open sockets itself: you give it the bytes you receive and an
object that stands for the connection.

- **`uwsproto.protocol`**: the wire format. It has `OpCode`,
  `CloseFrame`, `WebSocketState`, `is_valid_utf8`,
  `parse_close_payload`, `format_close_payload`, `message_frame_size`
  and `format_message`. It also has `FrameParser`, an incremental
  parser that takes bytes in pieces of any size and passes frame
  fragments to a handler object. The error strings are exported too:
  `ERR_TOO_BIG_MESSAGE`, `ERR_WEBSOCKET_TIMEOUT`, `ERR_INVALID_TEXT`,
  `ERR_TOO_BIG_MESSAGE_INFLATION` and `ERR_INVALID_CLOSE_PAYLOAD`.
- **`uwsproto.handshake`**: `generate(key)` returns the
  `Sec-WebSocket-Accept` value for a 24-character `Sec-WebSocket-Key`.
  It raises `ValueError` for a key of any other length.
- **`uwsproto.context_data`**: the settings and callbacks of a context
  (`ContextData`) and the state of one connection (`WebSocketData`,
  `CompressionStatus`). It also has `TopicTreeMessage` for messages
  queued for a topic, and `Inflater`, a permessage-deflate decompressor
  with a size limit.
- **`uwsproto.context`**: `WebSocketContext`, which joins the parser to
  a connection. It reassembles fragmented messages and inflates
  compressed ones. It checks text messages for valid UTF-8, answers
  pings with pongs, and ends the connection on close frames. It also
  handles idle timeouts, automatic pings, drain events and the end of a
  connection's lifetime.
- **`uwsproto.build`**: a driver that builds compiler and linker flags
  for the C++ example programs from environment variables, then runs
  the compiler.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Handshake

```python
from uwsproto.handshake import generate

print(generate("dGhlIHNhbXBsZSBub25jZQ=="))
# s3pPLMBiTxaQ9kYGzzhZRbK+xOo=
```

## Framing

```python
from uwsproto.protocol import OpCode, format_message, message_frame_size, parse_close_payload

frame = format_message(b"hello", OpCode.TEXT, 5, False, True, True)
assert len(frame) == message_frame_size(5)

close = parse_close_payload(b"\x03\xe8bye")
print(close.code, close.message)  # 1000 b'bye'
```

`format_message(payload, op_code, reported_length=None, compressed=False, fin=True, is_server=True)`
builds a frame. If you leave out `reported_length`, the payload's length
is used. The compressed bit is set only on frames whose op code is not
`CONTINUATION`. With `is_server=False`, the payload is masked with a
random 4-byte key, as a client does.

`parse_close_payload` reports code 1005 for a payload shorter than two
bytes. It reports 1006 when the code is reserved or out of range, or
when the reason is not valid UTF-8. `format_close_payload` returns an
empty payload for codes 0, 1005 and 1006.

## Handling a connection

`WebSocketContext(data, is_server=True)` takes a `ContextData`. Each
event method takes a connection object. That object must have a `data`
attribute holding its `WebSocketData`, and these methods: `close`,
`is_closed`, `is_shut_down`, `set_timeout`, `cork`, `uncork`,
`buffered_amount`, `write`, `shutdown`, `send` and `end`.

```python
from uwsproto.context import WebSocketContext
from uwsproto.context_data import ContextData, WebSocketData
from uwsproto.protocol import OpCode, format_message


class Connection:
    def __init__(self):
        self.data = WebSocketData()
        self.sent = []
        self.closed = False

    def close(self, reason): self.closed = True
    def is_closed(self): return self.closed
    def is_shut_down(self): return False
    def set_timeout(self, seconds): pass
    def cork(self): pass
    def uncork(self): pass
    def buffered_amount(self): return 0
    def write(self, data): return len(data)
    def shutdown(self): pass
    def send(self, message, op_code): self.sent.append((op_code, message))
    def end(self, code, message): self.closed = True


settings = ContextData(
    max_payload_length=1024,
    message_handler=lambda conn, message, op_code: print(op_code.name, message),
)
context = WebSocketContext(settings)
connection = Connection()
context.on_data(connection, format_message(b"hi", OpCode.TEXT, is_server=False))
# TEXT b'hi'
```

`WebSocketContext` calls these callbacks from `ContextData`:

- `message_handler(connection, payload, op_code)`
- `ping_handler(connection, payload)` and
  `pong_handler(connection, payload)`
- `drain_handler(connection)`, from `on_writable`, when backpressure
  was drained or there was none to begin with
- `close_handler(connection, 1006, reason)` and
  `subscription_handler(connection, topic_name, count - 1, count)`,
  from `on_close`. `on_close` only calls them if the connection was not
  already shutting down. Its `code` argument is the length of `reason`.

When `send_pings_automatically` is set, the first `on_timeout` sends a
ping and sets the timeout to the ping margin. A second timeout closes
the connection with `ERR_WEBSOCKET_TIMEOUT`. `on_long_timeout` ends the
connection with code 1000 and the message "please reconnect". `on_end`
closes the connection.

`ContextData.calculate_idle_timeout_components(idle_timeout)` splits an
idle timeout into a normal timeout and a ping margin of 4, 8 or 16
seconds. When automatic pings are on, the margin is taken off the
normal timeout. The result is stored in `idle_timeout_components`.

For permessage-deflate, create `WebSocketData(per_message_deflate=True,
dedicated_decompressor=True)` to give a connection its own
`Inflater`. Its sliding window then carries over from one message to
the next. Without a dedicated decompressor, the context's shared
`Inflater` is used, and it is reset for every message.

You can also drive `FrameParser(handler, is_server)` directly. Its
handler provides `set_compressed`, `force_close`,
`refuse_payload_length` and `handle_fragment`.

## What the package does not do

- It has no network server, event loop or socket layer. You supply the
  connection objects and pass them received bytes.
- It has no HTTP request parsing, upgrade handling, routing or
  `permessage-deflate` extension negotiation. `handshake.generate`
  only computes the accept value.
- It does not compress outgoing messages. `WebSocketData` creates a
  dedicated compressor when asked, but nothing in the package uses it.
- It has no topic tree for pub/sub. `on_close` works with any object
  set as `ContextData.topic_tree` that has a `free_subscriber` method,
  and with subscribers that have a `topics` attribute.

## Building the examples

The `uwsproto-build` command compiles the C++ example programs found
under `examples/` in the current directory. It reads `CXX` (default
`g++`), `CXXFLAGS`, `LDFLAGS` and `EXEC_SUFFIX` from the environment,
along with these feature switches:

| Variable           | Effect                                                   |
|--------------------|----------------------------------------------------------|
| `WITH_LTO=0`       | leave out `-flto`                                        |
| `WITH_ZLIB=0`      | do not link zlib; define `UWS_NO_ZLIB`                   |
| `WITH_PROXY=1`     | define `UWS_WITH_PROXY`                                  |
| `WITH_QUIC=1`      | define `LIBUS_USE_QUIC` and link lsquic                  |
| `WITH_BORINGSSL=1` | link BoringSSL (takes precedence over OpenSSL/WolfSSL)   |
| `WITH_OPENSSL=1`   | link OpenSSL (takes precedence over WolfSSL)             |
| `WITH_WOLFSSL=1`   | link WolfSSL                                             |
| `WITH_LIBUV=1`     | link libuv                                               |
| `WITH_ASIO=1`      | add `-pthread` / `-lpthread`                             |
| `WITH_ASAN=1`      | build with the address sanitizer                         |

```
uwsproto-build examples
```

Each compiler command is printed before it runs. The build stops with
status -1 at the first command that fails. The targets `capi`, `clean`,
`install` and `all` are accepted but only print that they do nothing
yet. Run without a target, the command prints its usage and exits with
status 1.

`uwsproto.build.compose_flags(environ)` returns the composed flags as a
`BuildFlags`. It also holds `cc` (from `CC`, default `cc`) and
`cflags`, which the example commands do not use.