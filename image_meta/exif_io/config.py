# -*- coding: utf-8 -*-
"""
引擎配置：模块旁 engine.cfg 为默认值，可用覆盖文件（参数或环境变量 IMAGE_META_CONFIG）叠加。
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import lru_cache

from image_meta.log import get_logger

log = get_logger("exif_io.config")

SETTING_KEYS = (
    "readable_extensions",
    "writable_extensions",
    "backup_suffix",
    "backup_retire_delay_sec",
    "batch_chunk_size",
)

_BUILTIN_DEFAULTS = {
    "readable_extensions": [".jpg", ".jpeg", ".png", ".tif", ".tiff"],
    "writable_extensions": [".jpg", ".jpeg"],
    "backup_suffix": ".backup",
    "backup_retire_delay_sec": 1.0,
    "batch_chunk_size": 3,
}


@dataclass(frozen=True)
class EngineSettings:
    readable_extensions: frozenset[str]
    writable_extensions: frozenset[str]
    backup_suffix: str
    backup_retire_delay_sec: float
    batch_chunk_size: int

    def is_readable(self, path: str) -> bool:
        return _ext(path) in self.readable_extensions

    def is_writable(self, path: str) -> bool:
        return _ext(path) in self.writable_extensions

    def backup_path_for(self, path: str) -> str:
        return f"{path}{self.backup_suffix}"


def _ext(path: str) -> str:
    return os.path.splitext(str(path))[1].lower()


def _module_cfg_path() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), "engine.cfg")


def load_engine_settings(override_path: str | None = None) -> dict:
    """读取 engine.cfg 作为默认值，再合并覆盖文件中已知的键（文件存在时）。"""
    base = dict(_BUILTIN_DEFAULTS)
    try:
        p = _module_cfg_path()
        if os.path.isfile(p):
            with open(p, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                base.update({k: v for k, v in data.items() if k in SETTING_KEYS})
    except (OSError, ValueError) as exc:
        log.warning("ignoring unreadable engine.cfg: %s", exc)
    override_path = override_path or os.environ.get("IMAGE_META_CONFIG", "").strip() or None
    if override_path and os.path.isfile(override_path):
        try:
            with open(override_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                for k in SETTING_KEYS:
                    if k in data:
                        base[k] = data[k]
        except (OSError, ValueError) as exc:
            log.warning("ignoring unreadable override config %s: %s", override_path, exc)
    return base


def save_engine_setting(override_path: str, key: str, value) -> None:
    """把单个键写入覆盖文件（整体读出、合并、写回）。"""
    if key not in SETTING_KEYS:
        raise KeyError(f"unknown engine setting: {key}")
    data = {}
    if os.path.isfile(override_path):
        try:
            with open(override_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                data = {}
        except (OSError, ValueError):
            data = {}
    data[key] = value
    with open(override_path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def _normalize_exts(values) -> frozenset[str]:
    out = set()
    for v in values or ():
        s = str(v).strip().lower()
        if not s:
            continue
        out.add(s if s.startswith(".") else f".{s}")
    return frozenset(out)


def build_settings(raw: dict) -> EngineSettings:
    chunk = int(raw.get("batch_chunk_size") or _BUILTIN_DEFAULTS["batch_chunk_size"])
    delay = float(raw.get("backup_retire_delay_sec", _BUILTIN_DEFAULTS["backup_retire_delay_sec"]))
    return EngineSettings(
        readable_extensions=_normalize_exts(raw.get("readable_extensions")),
        writable_extensions=_normalize_exts(raw.get("writable_extensions")),
        backup_suffix=str(raw.get("backup_suffix") or _BUILTIN_DEFAULTS["backup_suffix"]),
        backup_retire_delay_sec=max(0.0, delay),
        batch_chunk_size=max(1, chunk),
    )


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """进程级配置；修改覆盖文件后需调用 get_settings.cache_clear()。"""
    return build_settings(load_engine_settings())
