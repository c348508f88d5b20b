"""Read-only web dashboard for Team AI."""

from .server import create_app

__all__ = ["create_app"]
