"""Authentication module for Minecraft accounts."""

from .offline import OfflineAuthenticator, UserContext

__all__ = ["OfflineAuthenticator", "UserContext"]
