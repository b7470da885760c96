from __future__ import annotations

import asyncio
import io
import logging
import posixpath
import re
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List

from ..ai.types import Outcome
from ..pipeline.types import ResultBuckets


logger = logging.getLogger(__name__)

GROUP_NAMES: Dict[Outcome, str] = {
    Outcome.MALE: "Boys",
    Outcome.FEMALE: "Girls",
    Outcome.UNKNOWN: "Unsorted",
}

DEFAULT_ARCHIVE_NAME = "sorted_images.zip"

_COMPRESSION = {
    "deflated": zipfile.ZIP_DEFLATED,
    "stored": zipfile.ZIP_STORED,
}

# Fixed entry timestamp keeps archives reproducible for identical buckets.
_ENTRY_TIMESTAMP = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True)
class Archive:
    filename: str
    data: bytes = field(repr=False)
    entries: List[str] = field(default_factory=list)
    media_type: str = "application/zip"
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ArchiveBuilder:
    """Package result buckets as a zip with one folder per outcome."""

    filename: str = DEFAULT_ARCHIVE_NAME
    compression: str = "deflated"

    async def build(self, buckets: ResultBuckets) -> Archive:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.encode, buckets)

    def encode(self, buckets: ResultBuckets) -> Archive:
        method = _COMPRESSION.get(self.compression.strip().lower())
        if method is None:
            raise ValueError(f"Unsupported archive compression: {self.compression!r}")

        buffer = io.BytesIO()
        entries: List[str] = []
        with zipfile.ZipFile(buffer, mode="w", compression=method) as archive:
            for outcome, items in buckets:
                if not items:
                    continue
                group = GROUP_NAMES[outcome]
                used: set[str] = set()
                for item in items:
                    name = _unique_name(_sanitize_filename(item.filename), used)
                    entry = f"{group}/{name}"
                    info = zipfile.ZipInfo(entry, date_time=_ENTRY_TIMESTAMP)
                    info.compress_type = method
                    info.external_attr = 0o644 << 16
                    archive.writestr(info, item.data)
                    entries.append(entry)

        data = buffer.getvalue()
        logger.info(
            "Archive built filename=%s entries=%d bytes=%d",
            self.filename,
            len(entries),
            len(data),
        )
        return Archive(filename=self.filename, data=data, entries=entries)


def _sanitize_filename(filename: str) -> str:
    name = posixpath.basename(str(filename or "").replace("\\", "/")).strip()
    name = re.sub(r"[\x00-\x1f]+", "", name)
    if name in {"", ".", ".."}:
        return "image"
    return name


def _unique_name(name: str, used: set[str]) -> str:
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        stem, ext = name, ""
    candidate = name
    counter = 1
    while candidate.lower() in used:
        candidate = f"{stem}_{counter}.{ext}" if ext else f"{stem}_{counter}"
        counter += 1
    used.add(candidate.lower())
    return candidate


__all__ = ["Archive", "ArchiveBuilder", "DEFAULT_ARCHIVE_NAME", "GROUP_NAMES"]
