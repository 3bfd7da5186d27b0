"""FastAPI middleware for the conflict engine API."""

from src.api.middleware.request_context import RequestIDMiddleware

__all__ = ["RequestIDMiddleware"]
