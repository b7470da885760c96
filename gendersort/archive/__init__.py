from __future__ import annotations

from .builder import DEFAULT_ARCHIVE_NAME, GROUP_NAMES, Archive, ArchiveBuilder

__all__ = ["Archive", "ArchiveBuilder", "DEFAULT_ARCHIVE_NAME", "GROUP_NAMES"]
