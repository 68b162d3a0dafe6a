"""
HTTP API package - FastAPI app, routes and request dependencies.
"""
from .app import create_app
from .routes import router

__all__ = ["create_app", "router"]
