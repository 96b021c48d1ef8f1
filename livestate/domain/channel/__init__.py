"""
Channel state broadcast engine.

Includes:
- state: One channel's key/value document and its mutation protocol.
- registry: Channel id to state mapping with capacity and construct-once rules.
- persistence: Best-effort durable mirror (Redis).
- gateway: Topic-based fan-out to open connections.
- protocol: Message parsing/validation/framing and connection lifecycle.
"""
