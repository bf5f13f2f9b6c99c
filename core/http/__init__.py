"""HTTP client utilities."""

from core.http.retry import retry_async

__all__ = ["retry_async"]
