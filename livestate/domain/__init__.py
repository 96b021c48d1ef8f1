"""
Domain layer containing the channel state broadcast engine.

Submodules:
- channel: Channel documents, registry, broadcast protocol and gateway.
- utils: Domain-specific utilities (e.g., ID generation).
"""
