"""
livestate: channel state broadcast server.

Modules:
- domain.channel: channel documents, registry, broadcast protocol, gateway
- api: HTTP/WebSocket surface (FastAPI)
- storage: Redis client management
- main: application factory and server entry point
"""
