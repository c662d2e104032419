"""Version management module."""

from .manager import VersionManager
from .download_manager import DownloadManager, DownloadTask
from .models import VersionDescriptor, VersionManifest, VersionInfo

__all__ = ["VersionManager", "DownloadManager", "DownloadTask", "VersionDescriptor", "VersionManifest",
           "VersionInfo"]
