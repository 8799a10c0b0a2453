"""WebSocket framing, handshake value, connection event handling and an example build driver."""

__version__ = "0.1.0"