"""
HTTP API over the indexer and relayer.
"""

from .main import create_app

__all__ = ["create_app"]
