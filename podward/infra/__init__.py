from .http import BearerAuth, HttpClient, HttpError

__all__ = ["BearerAuth", "HttpClient", "HttpError"]
