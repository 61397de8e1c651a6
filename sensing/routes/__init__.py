"""Routes package for FastAPI endpoints.

This package contains all API route modules for the upload service.
"""

from sensing.routes import health, upload

__all__ = ["health", "upload"]
