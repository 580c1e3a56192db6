# -*- coding: utf-8 -*-
"""
按固定大小分块，把单文件写入应用到一批文件。

块内并发且互不影响；第 i 块全部结束后才派发第 i+1 块。单个文件失败不会中止或回滚
其他文件，部分失败通过 BatchResult 返回而不是抛出。
"""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Iterable, Sequence

from image_meta.errors import MetadataError
from image_meta.exif_io.config import get_settings
from image_meta.exif_io.writer import apply_patch
from image_meta.log import get_logger
from image_meta.models import BatchResult, MetadataPatch

log = get_logger("exif_io.batch")

CANCELLED_ERROR = "cancelled"

ProgressCallback = Callable[[int, int], None]


def _chunked(items: Sequence[str], size: int):
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _unique_paths(paths: Sequence[str]) -> list[str]:
    # 同一路径只写一次，避免对同一文件的重叠写入
    out: list[str] = []
    seen: set[str] = set()
    for p in paths:
        s = str(p)
        if s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


def run_batch(
    paths: Iterable[Any],
    operation: Callable[[str], None],
    *,
    chunk_size: int | None = None,
    cancel_event: threading.Event | None = None,
    on_progress: ProgressCallback | None = None,
    label: str = "process",
) -> BatchResult:
    """对每个路径执行 operation(path)，抛出异常即记为该路径失败。

    total_processed 是输入路径数（含重复）；重复路径只写一次，只出现在一个结果集合里。
    """
    given = [str(p) for p in paths]
    items = _unique_paths(given)
    size = max(1, int(chunk_size or get_settings().batch_chunk_size))
    result = BatchResult(total_processed=len(given))
    if not items:
        return result

    done = 0
    done_lock = threading.Lock()

    def _one(path: str) -> None:
        nonlocal done
        try:
            operation(path)
        except MetadataError as exc:
            result.record_failure(path, f"[{exc.code}] {exc}")
        except Exception as exc:
            log.exception("unexpected error while trying to %s %s", label, path)
            result.record_failure(path, f"{type(exc).__name__}: {exc}")
        else:
            result.record_success(path)
        if on_progress is not None:
            with done_lock:
                done += 1
                current = done
            try:
                on_progress(current, len(items))
            except Exception:
                log.exception("progress callback failed")

    chunks = list(_chunked(items, size))
    log.info("batch %s: %d files in %d chunks of <= %d", label, len(items), len(chunks), size)
    with ThreadPoolExecutor(max_workers=size, thread_name_prefix="MetaWrite") as executor:
        for index, chunk in enumerate(chunks):
            if cancel_event is not None and cancel_event.is_set():
                remaining = [p for c in chunks[index:] for p in c]
                log.info("batch %s cancelled, %d files not dispatched", label, len(remaining))
                for path in remaining:
                    result.record_failure(path, CANCELLED_ERROR)
                break
            wait([executor.submit(_one, path) for path in chunk])

    summary = result.summary(label)
    if summary:
        log.warning(summary)
    else:
        log.info("batch %s: all %d files done", label, result.total_processed)
    return result


def _patch_operation(patch: MetadataPatch) -> Callable[[str], None]:
    settings = get_settings()
    return lambda path: apply_patch(path, patch, settings)


def batch_write_metadata(paths: Iterable[Any], patch: MetadataPatch | dict, **kwargs) -> BatchResult:
    """同一个 patch 写到所有路径；只有 patch 本身不合法时抛 ValueError。"""
    patch = MetadataPatch.coerce(patch)
    return run_batch(paths, _patch_operation(patch), label=kwargs.pop("label", "write metadata to"), **kwargs)


def batch_set_rating(paths: Iterable[Any], rating: int, **kwargs) -> BatchResult:
    patch = MetadataPatch(rating=rating)
    return run_batch(paths, _patch_operation(patch), label="rate", **kwargs)


def batch_write_tags(paths: Iterable[Any], tags: Iterable[str], **kwargs) -> BatchResult:
    patch = MetadataPatch(tags=tags)
    return run_batch(paths, _patch_operation(patch), label="tag", **kwargs)
