# -*- coding: utf-8 -*-
"""
读取入口：decode → resolve → 规范化的 MetadataRecord。

列表/网格视图总要有记录可显示，所以单个文件在这里从不抛异常：不支持的类型、
缺失文件、损坏的容器一律降级为空记录。
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

from image_meta.errors import MetadataError, UnsupportedFormat
from image_meta.exif_io import codec
from image_meta.exif_io.config import get_settings
from image_meta.exif_io.resolver import (
    resolve_camera_info,
    resolve_date_created,
    resolve_exif_details,
    resolve_rating,
    resolve_tags,
)
from image_meta.log import get_logger
from image_meta.models import ExifDetails, MetadataRecord

log = get_logger("exif_io.reader")


def decode_file(path: Path | str) -> codec.RawContainer:
    """解码可读文件的容器；任何失败都会抛出。"""
    path = Path(path)
    if not get_settings().is_readable(str(path)):
        raise UnsupportedFormat(f"no metadata container for {path.suffix or '(none)'} files", str(path))
    return codec.decode(path.read_bytes())


def _decode_or_none(path: Path | str) -> codec.RawContainer | None:
    try:
        return decode_file(path)
    except MetadataError as exc:
        log.debug("no metadata for %s: %s", path, exc)
    except OSError as exc:
        log.warning("could not read %s: %s", path, exc)
    except Exception:  # 坏文件不能拖垮整个列表
        log.exception("unexpected error decoding %s", path)
    return None


def record_from_container(container: codec.RawContainer) -> MetadataRecord:
    return MetadataRecord(
        tags=resolve_tags(container),
        rating=resolve_rating(container),
        date_created=resolve_date_created(container),
        camera_info=resolve_camera_info(container),
    )


def read_metadata(path: Path | str) -> MetadataRecord:
    """路径对应的规范记录；什么都读不到时返回空记录。"""
    container = _decode_or_none(path)
    if container is None:
        return MetadataRecord.empty()
    try:
        record = record_from_container(container)
    except Exception:
        log.exception("could not resolve metadata for %s", path)
        return MetadataRecord.empty()
    log.debug("read %s: %d tags, rating %d", path, len(record.tags), record.rating)
    return record


def read_tags(path: Path | str) -> list[str]:
    return list(read_metadata(path).tags)


def read_rating(path: Path | str) -> int:
    return read_metadata(path).rating


def read_exif_details(path: Path | str) -> ExifDetails:
    container = _decode_or_none(path)
    if container is None:
        return ExifDetails()
    try:
        return resolve_exif_details(container)
    except Exception:
        log.exception("could not resolve EXIF details for %s", path)
        return ExifDetails()


def average_rating(paths: Iterable[Any]) -> float:
    """已评分文件（rating > 0）的平均分，保留一位小数；没有则为 0。"""
    ratings = [r for r in (read_rating(p) for p in paths) if r > 0]
    if not ratings:
        return 0
    return round(sum(ratings) / len(ratings), 1)


def rating_distribution(paths: Iterable[Any]) -> dict[int, int]:
    """按星级 0..5 统计文件数；超出范围的评分计为未评分。"""
    distribution = {star: 0 for star in range(6)}
    for p in paths:
        rating = read_rating(p)
        distribution[rating if rating in distribution else 0] += 1
    return distribution
