# -*- coding: utf-8 -*-
"""image_meta.log – logging for the metadata engine, shared by batch worker threads.

Every logger writes through one module-level sink: stderr always, plus a log file
when ``IMAGE_META_LOG_FILE`` is set or the host is a frozen build. The file is
opened on first use, and each record is written whole under a lock so lines from
concurrent writes never interleave.

Usage::
    from image_meta.log import get_logger
    log = get_logger("exif_io.writer")
    log.info("wrote %d tags to %s", len(tags), path)
    log.exception("commit failed for %s", path)
"""
from __future__ import annotations

import os
import sys
import threading
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO

APP_NAME = "ImageMeta"

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _state_dir() -> Path:
    """各平台上用户可写的日志目录。"""
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Local")
        return Path(base) / APP_NAME / "logs"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Logs" / APP_NAME
    return Path(os.environ.get("XDG_STATE_HOME") or (Path.home() / ".local" / "state")) / APP_NAME


def _resolve_log_file() -> str | None:
    """环境变量优先；打包版落盘，开发态只写 stderr。"""
    override = os.environ.get("IMAGE_META_LOG_FILE", "").strip()
    if override:
        return override
    if not getattr(sys, "frozen", False):
        return None
    return str(_state_dir() / "image_meta.log")


def _resolve_threshold() -> int:
    name = os.environ.get("IMAGE_META_LOG_LEVEL", "INFO").strip().upper()
    return LEVELS.index(name) if name in LEVELS else LEVELS.index("INFO")


class _Sink:
    """所有 logger 共用的输出端；文件首次写入时才打开，打开失败后不再重试。"""

    def __init__(self, path: str | None) -> None:
        self.path = path
        self._file: TextIO | None = None
        self._opened = False
        self._lock = threading.Lock()

    def _ensure_file(self) -> TextIO | None:
        if self._opened or not self.path:
            return self._file
        self._opened = True
        try:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "a", encoding="utf-8")  # noqa: SIM115
        except OSError:
            self._file = None
        return self._file

    def emit(self, line: str) -> None:
        with self._lock:
            fh = self._ensure_file()
            if fh is not None:
                try:
                    fh.write(line)
                    fh.flush()
                except OSError:
                    pass
            err = sys.stderr
            if err is None or not hasattr(err, "write"):
                return
            try:
                err.write(line)
                err.flush()
            except OSError:
                pass


_SINK = _Sink(_resolve_log_file())
_THRESHOLD = _resolve_threshold()


def _render(msg: str, args: tuple) -> str:
    if not args:
        return msg
    try:
        return msg % args
    except (TypeError, ValueError):
        return f"{msg} {args!r}"


class _Logger:
    """带名字的日志入口，只负责格式化，输出交给共享 sink。"""

    def __init__(self, name: str) -> None:
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def _log(self, level: int, text: str) -> None:
        if level < _THRESHOLD:
            return
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        thread = threading.current_thread().name
        _SINK.emit(f"{stamp} {LEVELS[level]} [{thread}] {self._name} {text}\n")

    def debug(self, msg: str, *args: Any) -> None:
        self._log(0, _render(msg, args))

    def info(self, msg: str, *args: Any) -> None:
        self._log(1, _render(msg, args))

    def warning(self, msg: str, *args: Any) -> None:
        self._log(2, _render(msg, args))

    def error(self, msg: str, *args: Any) -> None:
        self._log(3, _render(msg, args))

    def exception(self, msg: str, *args: Any) -> None:
        """按 ERROR 记录，并附上正在处理的异常堆栈。"""
        text = _render(msg, args)
        if sys.exc_info()[0] is not None:
            text = f"{text}\n{traceback.format_exc().rstrip()}"
        self._log(3, text)


def get_logger(name: str) -> _Logger:
    return _Logger(name)


def get_log_file_path() -> str | None:
    """日志文件路径；只写 stderr 时为 None。"""
    return _SINK.path
