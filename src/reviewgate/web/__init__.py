"""HTTP interface for Reviewgate.

Exposes the change workflow (create, record results, run reviews, gate,
commit, abandon) as a FastAPI application.
"""

from __future__ import annotations

from reviewgate.web.app import create_app
from reviewgate.web.middleware import RequestLoggingMiddleware

__all__ = [
    "create_app",
    "RequestLoggingMiddleware",
]
