"""
asgi.py -- ASGI entry point for the coin server.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers and deployment configs
point at one stable import path.
"""

from api.main import app

__all__ = ["app"]
