# -*- coding: utf-8 -*-
"""
image_meta: embedded image-metadata engine (keyword tags, star rating, capture
date, camera info) for a desktop photo tagger.

Usage:
    from image_meta import read_metadata, write_tags, batch_set_rating

    record = read_metadata("IMG_0001.jpg")
    result = write_tags("IMG_0001.jpg", ["holiday", "beach"])
    batch = batch_set_rating(paths, 4)
    message = batch.summary("rate")  # "Failed to rate 1 out of 12 files" or None
"""

from image_meta.errors import (
    BackupFailed,
    CommitFailed,
    MetadataError,
    TagFieldShadowed,
    UnsupportedFormat,
    UnsupportedWriteFormat,
)
from image_meta.exif_io import (
    average_rating,
    batch_set_rating,
    batch_write_metadata,
    batch_write_tags,
    rating_distribution,
    read_exif_details,
    read_metadata,
    read_rating,
    read_tags,
    wait_for_backup_cleanup,
    write_metadata,
    write_rating,
    write_tags,
)
from image_meta.models import (
    BatchResult,
    CameraInfo,
    ExifDetails,
    FailedFile,
    MetadataPatch,
    MetadataRecord,
    WriteResult,
)

__version__ = "0.3.0"

__all__ = [
    "read_metadata",
    "read_tags",
    "read_rating",
    "read_exif_details",
    "average_rating",
    "rating_distribution",
    "write_metadata",
    "write_tags",
    "write_rating",
    "wait_for_backup_cleanup",
    "batch_set_rating",
    "batch_write_tags",
    "batch_write_metadata",
    "MetadataRecord",
    "CameraInfo",
    "MetadataPatch",
    "WriteResult",
    "BatchResult",
    "FailedFile",
    "ExifDetails",
    "MetadataError",
    "UnsupportedFormat",
    "UnsupportedWriteFormat",
    "BackupFailed",
    "CommitFailed",
    "TagFieldShadowed",
]
