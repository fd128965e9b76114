"""
HTTP surface: the chat endpoint, the LINE webhook and session administration.
"""

from .app import create_app

__all__ = ["create_app"]
