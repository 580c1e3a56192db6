# -*- coding: utf-8 -*-
"""
事务式元数据写入：快照 → 解码/合并/编码 → 提交 → 延时删除备份。

约定：快照之后只要写入失败，``<path>.backup`` 里就是该文件最后一份完好的字节；
引擎不会自动从备份恢复。

同一路径的写入由调用方串行化，这里没有逐文件锁。
"""
from __future__ import annotations

import os
import shutil
import tempfile
import threading
from typing import Any, Iterable

from image_meta.errors import BackupFailed, CommitFailed, MetadataError, TagFieldShadowed, UnsupportedWriteFormat
from image_meta.exif_io import codec
from image_meta.exif_io.config import EngineSettings, get_settings
from image_meta.exif_io.resolver import shadowing_tag_field
from image_meta.log import get_logger
from image_meta.models import MetadataPatch, WriteResult, dedupe_preserving_order

log = get_logger("exif_io.writer")

# 待删除的备份：备份路径 → 定时器。引擎唯一的模块级状态，读写都要持锁。
_PENDING_CLEANUPS: dict[str, threading.Timer] = {}
_PENDING_LOCK = threading.Lock()


def _cancel_retirement(backup_path: str) -> None:
    """新快照之前撤销同一备份上尚未执行的删除，避免旧定时器删掉新备份。"""
    with _PENDING_LOCK:
        timer = _PENDING_CLEANUPS.pop(backup_path, None)
    if timer is not None:
        timer.cancel()
        log.debug("pending retirement of %s cancelled by a new write", backup_path)


def _snapshot(path: str, backup_path: str) -> None:
    try:
        shutil.copy2(path, backup_path)
    except OSError as exc:
        raise BackupFailed(f"could not create backup {backup_path}: {exc}", path) from exc


def _commit(path: str, data: bytes) -> None:
    """先写同目录临时文件，再 os.replace 原子替换目标。"""
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix=".imgmeta_", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        try:
            shutil.copymode(path, tmp_path)
        except OSError:
            pass
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _retire_backup(backup_path: str, timer: threading.Timer | None = None) -> None:
    # 定时器触发时，只有仍登记为该备份的当前定时器才删除
    with _PENDING_LOCK:
        if timer is not None:
            if _PENDING_CLEANUPS.get(backup_path) is not timer:
                return
            del _PENDING_CLEANUPS[backup_path]
        try:
            os.unlink(backup_path)
            log.debug("backup retired: %s", backup_path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("could not delete backup %s: %s", backup_path, exc)


def schedule_backup_retirement(backup_path: str, delay: float) -> threading.Timer:
    """宽限期后尽力删除备份；删除结果不影响本次写入是否成功。"""
    timer = threading.Timer(delay, lambda: _retire_backup(backup_path, timer))
    timer.daemon = True
    with _PENDING_LOCK:
        previous = _PENDING_CLEANUPS.get(backup_path)
        _PENDING_CLEANUPS[backup_path] = timer
    if previous is not None:
        previous.cancel()
    timer.start()
    return timer


def wait_for_backup_cleanup(timeout: float | None = None) -> bool:
    """等待已排期的备份删除执行完；没有剩余时返回 True。"""
    with _PENDING_LOCK:
        timers = list(_PENDING_CLEANUPS.values())
    for timer in timers:
        timer.join(timeout)
    with _PENDING_LOCK:
        return not _PENDING_CLEANUPS


def apply_patch(path: str, patch: MetadataPatch, settings: EngineSettings | None = None) -> None:
    """执行一次写入事务；失败时抛出 MetadataError 子类。"""
    settings = settings or get_settings()
    path = str(path)
    if not settings.is_writable(path):
        ext = os.path.splitext(path)[1] or "(none)"
        raise UnsupportedWriteFormat(f"metadata writing not supported for {ext} files", path)

    backup_path = settings.backup_path_for(path)
    _cancel_retirement(backup_path)
    _snapshot(path, backup_path)

    try:
        with open(path, "rb") as f:
            original = f.read()
        container = codec.decode(original)
        if patch.tags is not None:
            shadow = shadowing_tag_field(container)
            if shadow is not None:
                raise TagFieldShadowed(
                    f"{shadow} already holds keywords that readers show before XPKeywords; tags not written",
                    path,
                    shadow,
                )
        tags = dedupe_preserving_order(patch.tags) if patch.tags is not None else None
        codec.merge_patch(container, tags=tags, rating=patch.rating)
        encoded = codec.encode(container, original)
        _commit(path, encoded)
    except TagFieldShadowed:
        # 原文件未动，备份直接删掉
        _retire_backup(backup_path)
        raise
    except Exception as exc:
        log.error("write failed for %s, last good bytes kept in %s: %s", path, backup_path, exc)
        if isinstance(exc, CommitFailed):
            raise
        raise CommitFailed(f"{type(exc).__name__}: {exc}", path, backup_path) from exc

    schedule_backup_retirement(backup_path, settings.backup_retire_delay_sec)


def _run(path: Any, patch: MetadataPatch, what: str) -> WriteResult:
    path = str(path)
    log.info("writing %s to %s", what, path)
    try:
        apply_patch(path, patch)
    except MetadataError as exc:
        log.warning("%s not written to %s: [%s] %s", what, path, exc.code, exc)
        return WriteResult.failure(path, exc)
    log.info("%s written to %s", what, path)
    return WriteResult.success(path)


def write_metadata(path: Any, patch: MetadataPatch | dict) -> WriteResult:
    """写入部分字段 {tags?, rating?}；未给出的字段保持原样。"""
    try:
        patch = MetadataPatch.coerce(patch)
    except ValueError as exc:
        return WriteResult.failure(str(path), exc)
    parts = []
    if patch.tags is not None:
        parts.append(f"{len(patch.tags)} tags")
    if patch.rating is not None:
        parts.append(f"rating {patch.rating}")
    return _run(path, patch, " + ".join(parts))


def write_tags(path: Any, tags: Iterable[str]) -> WriteResult:
    try:
        patch = MetadataPatch(tags=tags)
    except ValueError as exc:
        return WriteResult.failure(str(path), exc)
    return _run(path, patch, f"{len(patch.tags)} tags")


def write_rating(path: Any, rating: int) -> WriteResult:
    try:
        patch = MetadataPatch(rating=rating)
    except ValueError as exc:
        return WriteResult.failure(str(path), exc)
    return _run(path, patch, f"rating {rating}")
