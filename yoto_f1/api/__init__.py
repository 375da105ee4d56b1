"""Yoto API client layer -- re-exports the primary client class."""

from yoto_f1.api.client import YotoClient, check_response
from yoto_f1.errors import AuthenticationError

__all__ = ["AuthenticationError", "YotoClient", "check_response"]
