# api/__init__.py
"""
HTTP and WebSocket surface for the swap delegate.

This package provides a Flask REST API with a Socket.IO feed:

- Owner-only rule creation and deletion (caller taken from the X-Caller header)
- Rule and book introspection
- Signer-side, sender-side and maximum quotes
- Per-market rule events pushed to WebSocket subscribers
- Statistics and health endpoints

Usage:
    from api import create_app, run

    app = create_app({"DELEGATE_OWNER": "0xowner"})
    run(app, host="0.0.0.0", port=5000)
"""

from .app import create_app, get_socketio, run

__version__ = "2.0.0"
__all__ = ["create_app", "get_socketio", "run"]
