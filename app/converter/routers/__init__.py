"""
Routers package for FastAPI endpoints.

Organized by domain:
- extract: Stateless extraction call
- sessions: Conversion sessions, table editing and export
"""

from . import extract, sessions

__all__ = ["extract", "sessions"]
