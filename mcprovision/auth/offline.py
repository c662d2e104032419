"""Offline authentication for Minecraft."""

import hashlib
import uuid

from pydantic import BaseModel

DEFAULT_USERNAME = "Player"


class UserContext(BaseModel):
    """Identity fields substituted into the launch arguments."""
    username: str
    uuid: str
    access_token: str = "0"
    user_type: str = "legacy"
    xuid: str = "0"
    client_id: str = ""


def offline_uuid(username: str) -> str:
    """UUID the game itself derives for offline players (name-based, version 3)."""
    digest = bytearray(hashlib.md5(f"OfflinePlayer:{username}".encode("utf-8")).digest())
    digest[6] = (digest[6] & 0x0F) | 0x30
    digest[8] = (digest[8] & 0x3F) | 0x80
    return uuid.UUID(bytes=bytes(digest)).hex


class OfflineAuthenticator:
    """Offline mode authenticator with username only."""

    @staticmethod
    async def authenticate(username: str) -> UserContext:
        """Authenticate offline with given username."""
        if not username or len(username) > 16:
            raise ValueError("Invalid username for offline mode")

        return UserContext(username=username, uuid=offline_uuid(username))

    @staticmethod
    def default() -> UserContext:
        """Placeholder identity used when no account context is supplied."""
        return UserContext(username=DEFAULT_USERNAME, uuid=offline_uuid(DEFAULT_USERNAME))
