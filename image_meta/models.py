# -*- coding: utf-8 -*-
"""Value types returned to callers of the metadata engine (no I/O here)."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Sequence

# Separator of the stored keyword string; always written after the last tag too.
TAG_SEPARATOR = ";"


@dataclass(frozen=True)
class CameraInfo:
    make: str | None = None
    model: str | None = None
    lens: str | None = None
    aperture: str | None = None  # "f/2.8"
    shutter_speed: str | None = None  # "1/250s"
    iso: int | None = None
    focal_length: str | None = None  # "50mm"

    def to_dict(self) -> dict[str, Any]:
        return {
            "make": self.make,
            "model": self.model,
            "lens": self.lens,
            "aperture": self.aperture,
            "shutterSpeed": self.shutter_speed,
            "iso": self.iso,
            "focalLength": self.focal_length,
        }


@dataclass(frozen=True)
class MetadataRecord:
    """Canonical, format-agnostic metadata of one image file."""

    tags: tuple[str, ...] = ()
    rating: int = 0
    date_created: datetime = field(default_factory=datetime.now)
    camera_info: CameraInfo | None = None

    @classmethod
    def empty(cls) -> "MetadataRecord":
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "tags": list(self.tags),
            "rating": self.rating,
            "dateCreated": self.date_created.isoformat(),
            "cameraInfo": self.camera_info.to_dict() if self.camera_info else None,
        }


@dataclass(frozen=True)
class MetadataPatch:
    """Partial update: only the fields that are not None get written."""

    tags: tuple[str, ...] | None = None
    rating: int | None = None

    def __post_init__(self) -> None:
        if self.tags is None and self.rating is None:
            raise ValueError("metadata patch must carry tags, rating or both")
        if self.tags is not None:
            if isinstance(self.tags, (str, bytes)) or not isinstance(self.tags, Iterable):
                raise ValueError("tags must be a sequence of strings")
            tags = tuple(self.tags)
            if not all(isinstance(t, str) for t in tags):
                raise ValueError("tags must be a sequence of strings")
            tags = tuple(t.strip() for t in tags)
            if not all(tags):
                raise ValueError("tags must not be blank")
            # the stored keyword string is split on TAG_SEPARATOR
            clashing = [t for t in tags if TAG_SEPARATOR in t]
            if clashing:
                raise ValueError(f"tags must not contain {TAG_SEPARATOR!r}: {clashing}")
            object.__setattr__(self, "tags", tags)
        if self.rating is not None and (isinstance(self.rating, bool) or not isinstance(self.rating, int)):
            raise ValueError(f"rating must be an integer, got {self.rating!r}")

    @classmethod
    def coerce(cls, patch: "MetadataPatch | dict[str, Any]") -> "MetadataPatch":
        """Accept either a patch or a plain ``{"tags": [...], "rating": n}`` mapping."""
        if isinstance(patch, cls):
            return patch
        if not isinstance(patch, dict):
            raise ValueError(f"unsupported patch type: {type(patch).__name__}")
        unknown = set(patch) - {"tags", "rating"}
        if unknown:
            raise ValueError(f"unsupported patch fields: {sorted(unknown)}")
        return cls(tags=patch.get("tags"), rating=patch.get("rating"))


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a single-file write; never raised, always returned."""

    ok: bool
    path: str
    error: str | None = None
    code: str = "OK"

    @staticmethod
    def success(path: str) -> "WriteResult":
        return WriteResult(ok=True, path=path)

    @staticmethod
    def failure(path: str, exc: BaseException) -> "WriteResult":
        code = getattr(exc, "code", None) or type(exc).__name__
        return WriteResult(ok=False, path=path, error=str(exc) or code, code=str(code))

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class FailedFile:
    path: str
    error: str


@dataclass
class BatchResult:
    """Partition of a batch into successful and failed paths.

    ``record_success`` / ``record_failure`` may be called from worker threads.
    """

    total_processed: int = 0
    successful: set[str] = field(default_factory=set)
    failed: list[FailedFile] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_success(self, path: str) -> None:
        with self._lock:
            self.successful.add(path)

    def record_failure(self, path: str, error: str) -> None:
        with self._lock:
            self.failed.append(FailedFile(path=path, error=error))

    @property
    def failed_paths(self) -> list[str]:
        return [f.path for f in self.failed]

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self, verb: str = "process") -> str | None:
        """``"Failed to rate 2 out of 7 files"``; None when nothing failed."""
        if not self.failed:
            return None
        return f"Failed to {verb} {len(self.failed)} out of {self.total_processed} files"

    def to_dict(self) -> dict[str, Any]:
        return {
            "successful": sorted(self.successful),
            "failed": [{"filePath": f.path, "error": f.error} for f in self.failed],
            "totalProcessed": self.total_processed,
        }


@dataclass(frozen=True)
class ExifDetails:
    """Detailed EXIF view for property panels."""

    camera: dict[str, Any] = field(default_factory=lambda: {"make": None, "model": None, "lens": None})
    settings: dict[str, Any] = field(
        default_factory=lambda: {
            "aperture": None,
            "shutter_speed": None,
            "iso": None,
            "focal_length": None,
            "flash": None,
        }
    )
    location: dict[str, Any] = field(default_factory=lambda: {"date_time": None, "gps": None})
    technical: dict[str, Any] = field(
        default_factory=lambda: {"color_space": None, "white_balance": None, "metering_mode": None}
    )


def dedupe_preserving_order(items: Sequence[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return tuple(out)
