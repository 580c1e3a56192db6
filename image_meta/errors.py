# -*- coding: utf-8 -*-
"""Error taxonomy of the metadata engine.

Only the write path lets these escape to its immediate caller, and even there
the public wrappers fold them into a ``WriteResult``. Read paths absorb them into
default records; batch operations fold them into ``BatchResult.failed``.
"""
from __future__ import annotations


class MetadataError(Exception):
    """Base class for every error raised by image_meta."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path

    @property
    def code(self) -> str:
        return type(self).__name__


class UnsupportedFormat(MetadataError):
    """The file type carries no container this engine can decode."""


class UnsupportedWriteFormat(UnsupportedFormat):
    """The file type is readable but the codec cannot re-encode it."""


class BackupFailed(MetadataError):
    """The pre-write snapshot could not be created; the original is untouched."""


class CommitFailed(MetadataError):
    """Encode or overwrite failed after the backup was taken."""

    def __init__(self, message: str, path: str | None = None, backup_path: str | None = None) -> None:
        super().__init__(message, path)
        self.backup_path = backup_path


class TagFieldShadowed(MetadataError):
    """Tags would be written below a non-empty keyword field that readers prefer.

    Raised before anything is written; the file is left as it was.
    """

    def __init__(self, message: str, path: str | None = None, field: str | None = None) -> None:
        super().__init__(message, path)
        self.field = field
