"""Common utilities."""

from .async_http import AsyncHTTPClient
from .host import HostPlatform
from .logger import setup_logging

__all__ = ["AsyncHTTPClient", "HostPlatform", "setup_logging"]
