# -*- coding: utf-8 -*-
"""
exif_io：JPEG / PNG / TIFF 元数据的容器编解码（piexif + Pillow）、标签与评分解析、
事务式写入和批量调度。
"""
from __future__ import annotations

from image_meta.exif_io.batch import batch_set_rating, batch_write_metadata, batch_write_tags, run_batch
from image_meta.exif_io.codec import RawContainer, decode, detect_format, encode, merge_patch
from image_meta.exif_io.config import EngineSettings, get_settings, load_engine_settings, save_engine_setting
from image_meta.exif_io.reader import (
    average_rating,
    rating_distribution,
    read_exif_details,
    read_metadata,
    read_rating,
    read_tags,
)
from image_meta.exif_io.resolver import TAG_FIELD_PRIORITY, resolve_tags, split_tag_string
from image_meta.exif_io.writer import (
    apply_patch,
    wait_for_backup_cleanup,
    write_metadata,
    write_rating,
    write_tags,
)

__all__ = [
    "RawContainer",
    "decode",
    "detect_format",
    "encode",
    "merge_patch",
    "EngineSettings",
    "get_settings",
    "load_engine_settings",
    "save_engine_setting",
    "TAG_FIELD_PRIORITY",
    "resolve_tags",
    "split_tag_string",
    "read_metadata",
    "read_tags",
    "read_rating",
    "read_exif_details",
    "average_rating",
    "rating_distribution",
    "apply_patch",
    "write_metadata",
    "write_tags",
    "write_rating",
    "wait_for_backup_cleanup",
    "run_batch",
    "batch_set_rating",
    "batch_write_tags",
    "batch_write_metadata",
]
