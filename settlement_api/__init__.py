"""REST surface of the freight settlement engine (FastAPI)."""

from settlement_api.app import create_app

__all__ = ["create_app"]
