"""API middleware."""

from detective.api.middleware.request_id import RequestIDMiddleware

__all__ = ["RequestIDMiddleware"]
