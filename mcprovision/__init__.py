"""Provisioning core for version-pinned Minecraft instances."""

__version__ = "0.1.0"
