# -*- coding: utf-8 -*-
"""
二进制容器编解码：把 JPEG / PNG / TIFF 字节流中的内嵌元数据解码为 RawContainer，
并只重写 JPEG 的 EXIF APP1 段。

解码：piexif 读 EXIF 各 IFD；Pillow 负责格式探测、IPTC（Photoshop IRB / TIFF 33723）
与 XMP 包。编码：piexif.dump 生成 EXIF 块，再按 JPEG 标记逐段拼接，只替换 EXIF APP1，
JFIF APP0 / XMP / IPTC / ICC 与像素数据原样保留。
"""
from __future__ import annotations

import io
import struct
from collections.abc import Mapping
from typing import Any, Iterator

import piexif
from PIL import Image, IptcImagePlugin

from image_meta.errors import UnsupportedFormat, UnsupportedWriteFormat
from image_meta.exif_io.xmp_packet import parse_xmp_packet
from image_meta.log import get_logger
from image_meta.models import TAG_SEPARATOR

log = get_logger("exif_io.codec")

FORMAT_JPEG = "jpeg"
FORMAT_PNG = "png"
FORMAT_TIFF = "tiff"
WRITABLE_FORMATS = frozenset({FORMAT_JPEG})

_JPEG_SIGNATURE = b"\xff\xd8\xff"
_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_TIFF_SIGNATURES = (b"II*\x00", b"MM\x00*")
_XMP_APP1_HEADER = b"http://ns.adobe.com/xap/1.0/\x00"

_MARKER_APP0 = 0xE0
_MARKER_APP1 = 0xE1
_MARKER_SOS = 0xDA
_MARKER_EOI = 0xD9
_EXIF_HEADER = b"Exif\x00\x00"
_MAX_SEGMENT_PAYLOAD = 0xFFFF - 2

EXIF_SEGMENTS = ("0th", "Exif", "GPS", "Interop", "1st")
IPTC_SEGMENT = "IPTC"
XMP_SEGMENT = "XMP"

IPTC_KEYWORDS = (2, 25)

TAG_XP_KEYWORDS = piexif.ImageIFD.XPKeywords
TAG_RATING = piexif.ImageIFD.Rating
TAG_RATING_PERCENT = piexif.ImageIFD.RatingPercent

# 写入端只允许改动这几个字段
WRITABLE_FIELDS = frozenset(
    {
        ("0th", TAG_XP_KEYWORDS),
        ("0th", TAG_RATING),
        ("0th", TAG_RATING_PERCENT),
    }
)

# Windows 资源管理器：星级 → 百分比
_RATING_PERCENT = {0: 0, 1: 1, 2: 25, 3: 50, 4: 75, 5: 99}

_USER_COMMENT_CODECS = {
    b"ASCII\x00\x00\x00": "ascii",
    b"UNICODE\x00": "utf-16-le",
    b"JIS\x00\x00\x00\x00\x00": "shift_jis",
    b"\x00\x00\x00\x00\x00\x00\x00\x00": "utf-8",
}


class RawContainer(Mapping):
    """段名 → {字段 id → 值}，沿用容器自身的寻址方式。

    EXIF 各段用整数 tag id 与 piexif 的取值约定；``IPTC`` 用 ``(record, dataset)``；
    ``XMP`` 用 ``"prefix:Name"``。
    """

    def __init__(self, fmt: str | None = None, segments: dict[str, dict] | None = None, thumbnail: bytes | None = None):
        self.format = fmt
        self._segments: dict[str, dict] = {name: {} for name in (*EXIF_SEGMENTS, IPTC_SEGMENT, XMP_SEGMENT)}
        for name, fields in (segments or {}).items():
            self._segments[name] = dict(fields or {})
        self.thumbnail = thumbnail

    def __getitem__(self, segment: str) -> dict:
        return self._segments[segment]

    def __iter__(self) -> Iterator[str]:
        return iter(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def __repr__(self) -> str:
        counts = {k: len(v) for k, v in self._segments.items() if v}
        return f"RawContainer(format={self.format!r}, fields={counts})"

    def get_field(self, segment: str, field_id: Any, default: Any = None) -> Any:
        return self._segments.get(segment, {}).get(field_id, default)

    def set_field(self, segment: str, field_id: Any, value: Any) -> None:
        """设置（value 为 None 时清除）白名单内的可写字段，其余字段一律 KeyError。"""
        if (segment, field_id) not in WRITABLE_FIELDS:
            raise KeyError(f"field {segment}:{field_id} is not writable")
        fields = self._segments.setdefault(segment, {})
        if value is None:
            fields.pop(field_id, None)
        else:
            fields[field_id] = value

    def is_empty(self) -> bool:
        return not any(self._segments.values()) and not self.thumbnail

    def exif_dict(self) -> dict[str, Any]:
        """piexif.dump 所需的字典形态。"""
        out: dict[str, Any] = {name: dict(self._segments.get(name) or {}) for name in EXIF_SEGMENTS}
        out["thumbnail"] = self.thumbnail
        return out


def detect_format(data: bytes) -> str:
    head = bytes(data[:8])
    if head.startswith(_JPEG_SIGNATURE):
        return FORMAT_JPEG
    if head.startswith(_PNG_SIGNATURE):
        return FORMAT_PNG
    if head[:4] in _TIFF_SIGNATURES:
        return FORMAT_TIFF
    raise UnsupportedFormat("no supported image signature (JPEG/PNG/TIFF)")


def _empty_exif() -> dict[str, Any]:
    return {"0th": {}, "Exif": {}, "GPS": {}, "Interop": {}, "1st": {}, "thumbnail": None}


def _load_exif(source: bytes | None) -> dict[str, Any]:
    """对 JPEG/TIFF 流或 ``Exif\\0\\0`` 块执行 piexif.load；损坏的块按空处理。"""
    if not source:
        return _empty_exif()
    try:
        loaded = piexif.load(source)
    except Exception as exc:  # piexif 以 ValueError / struct.error / InvalidImageDataError 报告损坏
        log.warning("damaged EXIF block ignored: %s", exc)
        return _empty_exif()
    for name in EXIF_SEGMENTS:
        if not isinstance(loaded.get(name), dict):
            loaded[name] = {}
    return loaded


def _decode_text(raw: Any) -> str:
    if isinstance(raw, bytes):
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw.decode("latin-1")
    return str(raw)


def _iptc_fields(iptc: dict | None) -> dict[tuple[int, int], Any]:
    fields: dict[tuple[int, int], Any] = {}
    for key, raw in (iptc or {}).items():
        if isinstance(raw, list):
            fields[key] = [_decode_text(v).strip() for v in raw]
        else:
            fields[key] = _decode_text(raw).strip()
    return fields


def _pillow_blocks(data: bytes, fmt: str) -> tuple[bytes | None, dict | None, Any]:
    """返回 Pillow 暴露的 (EXIF 块, IPTC 字典, XMP 包)。"""
    try:
        with Image.open(io.BytesIO(data)) as im:
            info = dict(im.info)
            iptc = IptcImagePlugin.getiptcinfo(im) if fmt in (FORMAT_JPEG, FORMAT_TIFF) else None
            applist = list(getattr(im, "applist", None) or ())
    except Exception as exc:  # 截断文件时 Pillow 抛出的异常类型很多
        log.debug("Pillow could not open %s stream: %s", fmt, exc)
        return None, None, None
    xmp = info.get("xmp") or info.get("XML:com.adobe.xmp")
    if not xmp:
        # 旧版 Pillow 只把 JPEG 的 XMP 放在原始 APP 列表里
        for marker, payload in applist:
            if marker == "APP1" and payload.startswith(_XMP_APP1_HEADER):
                xmp = payload[len(_XMP_APP1_HEADER) :]
                break
    return info.get("exif"), iptc, xmp


def decode(data: bytes) -> RawContainer:
    """解码图像字节流的元数据容器。

    非 JPEG/PNG/TIFF 抛 UnsupportedFormat；没有任何元数据的文件得到空容器。
    """
    fmt = detect_format(data)
    exif_block, iptc, xmp_packet = _pillow_blocks(data, fmt)

    # JPEG / TIFF 交给 piexif 直接读；PNG 的 EXIF 在 eXIf 块里
    exif = _load_exif(bytes(data) if fmt in (FORMAT_JPEG, FORMAT_TIFF) else exif_block)
    if not xmp_packet and fmt == FORMAT_TIFF:
        xmp_packet = exif["0th"].get(piexif.ImageIFD.XMLPacket)
    if isinstance(xmp_packet, tuple):
        xmp_packet = bytes(xmp_packet)

    segments: dict[str, dict] = {name: exif[name] for name in EXIF_SEGMENTS}
    segments[IPTC_SEGMENT] = _iptc_fields(iptc)
    segments[XMP_SEGMENT] = parse_xmp_packet(xmp_packet)
    container = RawContainer(fmt, segments, exif.get("thumbnail"))
    log.debug("decoded %r", container)
    return container


def split_jpeg_segments(data: bytes) -> tuple[list[bytes], bytes]:
    """拆出 SOI 与 SOS 之间的标记段：返回 ([完整段字节, ...], SOS 起的剩余数据)。"""
    data = bytes(data)
    segments: list[bytes] = []
    pos = 2
    while pos + 4 <= len(data):
        if data[pos] != 0xFF:
            raise ValueError(f"malformed JPEG: expected a marker at offset {pos}")
        marker = data[pos + 1]
        if marker == 0xFF:  # 填充字节
            pos += 1
            continue
        if marker in (_MARKER_SOS, _MARKER_EOI):
            break
        length = struct.unpack(">H", data[pos + 2 : pos + 4])[0]
        end = pos + 2 + length
        if length < 2 or end > len(data):
            raise ValueError(f"malformed JPEG: segment at offset {pos} overruns the file")
        segments.append(data[pos:end])
        pos = end
    return segments, data[pos:]


def _is_exif_app1(segment: bytes) -> bool:
    return segment[1] == _MARKER_APP1 and segment[4:10] == _EXIF_HEADER


def encode(container: RawContainer, original_bytes: bytes) -> bytes:
    """把容器的 EXIF 各段写回 original_bytes（仅 JPEG）。

    旧的 EXIF APP1 全部去掉，新段放在 JFIF APP0 之后（没有 APP0 时紧跟 SOI），
    其余段与扫描数据逐字节不变。
    """
    fmt = detect_format(original_bytes)
    if fmt not in WRITABLE_FORMATS:
        raise UnsupportedWriteFormat(f"cannot re-encode {fmt.upper()} metadata")
    exif_bytes = piexif.dump(container.exif_dict())
    if len(exif_bytes) > _MAX_SEGMENT_PAYLOAD:
        raise ValueError(f"EXIF block of {len(exif_bytes)} bytes does not fit one APP1 segment")
    app1 = b"\xff\xe1" + struct.pack(">H", len(exif_bytes) + 2) + exif_bytes

    segments, rest = split_jpeg_segments(original_bytes)
    kept = [seg for seg in segments if not _is_exif_app1(seg)]
    at = 1 if kept and kept[0][1] == _MARKER_APP0 else 0
    kept.insert(at, app1)
    return bytes(original_bytes[:2]) + b"".join(kept) + rest


# ---------------------------------------------------------------------------
# 字段取值约定（piexif → Python），resolver 与 writer 共用
# ---------------------------------------------------------------------------


def encode_xp_text(text: str) -> bytes:
    """Windows XP* 标签：UTF-16LE，末尾两个 NUL。"""
    if not text:
        return b""
    return text.encode("utf-16-le") + b"\x00\x00"


def decode_xp_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.rstrip("\x00")
    try:
        raw = bytes(value)
    except (TypeError, ValueError):
        return None
    if len(raw) % 2:
        raw = raw[:-1]
    return raw.decode("utf-16-le", errors="ignore").rstrip("\x00")


def decode_ascii(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return _decode_text(value).rstrip("\x00")
    return str(value)


def decode_user_comment(value: Any) -> str | None:
    """EXIF UserComment 前 8 字节是字符集标识。"""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    try:
        raw = bytes(value)
    except (TypeError, ValueError):
        return None
    prefix, body = raw[:8], raw[8:]
    codec = _USER_COMMENT_CODECS.get(prefix)
    if codec is None:
        return _decode_text(raw).rstrip("\x00")
    return body.decode(codec, errors="ignore").rstrip("\x00")


def join_tags(tags) -> str:
    """存成 "a;b;"：结尾也带分隔符，读回时 ';' 总是最先命中，含 ',' '|' 的标签不会被拆开。"""
    return "".join(f"{t}{TAG_SEPARATOR}" for t in tags)


def merge_patch(container: RawContainer, tags=None, rating: int | None = None) -> RawContainer:
    """只覆盖调用方给出的字段，其余保持解码时的样子。"""
    if tags is not None:
        joined = join_tags(tags)
        container.set_field("0th", TAG_XP_KEYWORDS, encode_xp_text(joined) if joined else None)
    if rating is not None:
        container.set_field("0th", TAG_RATING, rating)
        container.set_field("0th", TAG_RATING_PERCENT, _RATING_PERCENT.get(rating))
    return container
