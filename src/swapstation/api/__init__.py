"""HTTP API."""

from swapstation.api.app import create_app

__all__ = ["create_app"]
