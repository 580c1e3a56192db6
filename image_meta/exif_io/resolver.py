# -*- coding: utf-8 -*-
"""从解码后的 RawContainer 解析规范值（纯函数、同步、无副作用）。

标签取固定优先级中第一个非空字段，低优先级字段不合并：各厂商常在多个命名空间里
镜像同一组关键词。字段缺失或格式错误时不抛异常，一律得到空值 / 默认值。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, NamedTuple

import piexif

from image_meta.exif_io.codec import (
    IPTC_KEYWORDS,
    IPTC_SEGMENT,
    TAG_RATING,
    TAG_XP_KEYWORDS,
    XMP_SEGMENT,
    RawContainer,
    decode_ascii,
    decode_user_comment,
    decode_xp_text,
)
from image_meta.models import CameraInfo, ExifDetails, dedupe_preserving_order

TAG_SEPARATORS = (";", ",", "|", "\n")

_EXIF_DATE_FORMATS = ("%Y:%m:%d %H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y:%m:%d %H:%M", "%Y:%m:%d")


class FieldAccessor(NamedTuple):
    name: str
    read: Callable[[RawContainer], Any]


def _text(value: Any) -> str | None:
    text = decode_ascii(value)
    return text.strip() if text and text.strip() else None


def _xmp(key: str) -> Callable[[RawContainer], Any]:
    return lambda c: c.get_field(XMP_SEGMENT, key)


def _xp(tag_id: int) -> Callable[[RawContainer], Any]:
    return lambda c: decode_xp_text(c.get_field("0th", tag_id))


TAG_FIELD_PRIORITY: tuple[FieldAccessor, ...] = (
    FieldAccessor("Keywords", lambda c: c.get_field(IPTC_SEGMENT, IPTC_KEYWORDS)),
    FieldAccessor("Subject", _xmp("dc:subject")),
    FieldAccessor("XPKeywords", _xp(TAG_XP_KEYWORDS)),
    FieldAccessor("XPComment", _xp(piexif.ImageIFD.XPComment)),
    FieldAccessor("XPSubject", _xp(piexif.ImageIFD.XPSubject)),
    FieldAccessor("UserComment", lambda c: decode_user_comment(c.get_field("Exif", piexif.ExifIFD.UserComment))),
    FieldAccessor("ImageDescription", lambda c: decode_ascii(c.get_field("0th", piexif.ImageIFD.ImageDescription))),
    FieldAccessor("HierarchicalSubject", _xmp("lr:hierarchicalSubject")),
)

WRITTEN_TAG_FIELD = "XPKeywords"

RATING_FIELD_PRIORITY: tuple[FieldAccessor, ...] = (
    FieldAccessor("Rating", lambda c: c.get_field("0th", TAG_RATING)),
    FieldAccessor("xmp:Rating", _xmp("xmp:Rating")),
)


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return any(str(v).strip() for v in value)
    return True


def split_tag_string(value: str) -> list[str]:
    """按优先级找第一个出现过的分隔符来拆分；都没有时整串是一个标签。"""
    for sep in TAG_SEPARATORS:
        if sep in value:
            return [t.strip() for t in value.split(sep) if t.strip()]
    whole = value.strip()
    return [whole] if whole else []


def first_tag_field(container: RawContainer) -> tuple[str, Any] | None:
    for accessor in TAG_FIELD_PRIORITY:
        value = accessor.read(container)
        if _is_present(value):
            return accessor.name, value
    return None


def shadowing_tag_field(container: RawContainer) -> str | None:
    """XPKeywords（写入端唯一的标签字段）之前若已有非空字段，返回其名称。"""
    for accessor in TAG_FIELD_PRIORITY:
        if accessor.name == WRITTEN_TAG_FIELD:
            return None
        if _is_present(accessor.read(container)):
            return accessor.name
    return None


def resolve_tags(container: RawContainer) -> tuple[str, ...]:
    hit = first_tag_field(container)
    if hit is None:
        return ()
    _, value = hit
    if isinstance(value, (list, tuple)):
        raw = [str(v).strip() for v in value if str(v).strip()]
    else:
        raw = split_tag_string(str(value))
    return dedupe_preserving_order(raw)


def parse_rating(value: Any) -> int:
    """评分按整数解析，非数字为 0，不做截断。"""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, (list, tuple)) and value:
        return parse_rating(value[0])
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return 0


def resolve_rating(container: RawContainer) -> int:
    for accessor in RATING_FIELD_PRIORITY:
        value = accessor.read(container)
        if value is not None and value != "":
            return parse_rating(value)
    return 0


def parse_exif_datetime(value: Any) -> datetime | None:
    text = _text(value)
    if not text:
        return None
    text = text.split(".")[0].split("+")[0].strip()
    for fmt in _EXIF_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def resolve_date_created(container: RawContainer) -> datetime:
    candidates = (
        container.get_field("Exif", piexif.ExifIFD.DateTimeOriginal),
        container.get_field("0th", piexif.ImageIFD.DateTime),
        container.get_field("Exif", piexif.ExifIFD.DateTimeDigitized),
    )
    for raw in candidates:
        parsed = parse_exif_datetime(raw)
        if parsed is not None:
            return parsed
    return datetime.now()


# ---------------------------------------------------------------------------
# 相机信息
# ---------------------------------------------------------------------------


def _ratio_to_float(value: Any) -> float:
    if isinstance(value, tuple) and len(value) == 2:
        num, den = value[0], value[1]
        if den == 0:
            raise ZeroDivisionError("rational with zero denominator")
        return float(num) / float(den)
    if isinstance(value, (list, tuple)) and value:
        return _ratio_to_float(value[0])
    return float(value)


def _safe_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return _ratio_to_float(value)
    except (TypeError, ValueError, ZeroDivisionError, OverflowError):
        return None


def _number(value: float) -> str:
    return f"{value:g}"


def format_aperture(value: Any) -> str | None:
    f = _safe_float(value)
    if f is None or f <= 0:
        return None
    return f"f/{_number(f)}"


def format_shutter_speed(value: Any) -> str | None:
    seconds = _safe_float(value)
    if not seconds or seconds <= 0:
        return None
    denominator = round(1 / seconds)
    if denominator <= 0:
        return None
    return f"1/{denominator}s"


def format_focal_length(value: Any) -> str | None:
    f = _safe_float(value)
    if f is None or f <= 0:
        return None
    return f"{_number(f)}mm"


def _iso(value: Any) -> int | None:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _lens(container: RawContainer) -> str | None:
    lens = _text(container.get_field("Exif", piexif.ExifIFD.LensModel))
    if lens:
        return lens
    xmp_lens = container.get_field(XMP_SEGMENT, "aux:Lens") or container.get_field(XMP_SEGMENT, "exifEX:LensModel")
    return str(xmp_lens).strip() if xmp_lens else None


def resolve_camera_info(container: RawContainer) -> CameraInfo | None:
    make = _text(container.get_field("0th", piexif.ImageIFD.Make))
    model = _text(container.get_field("0th", piexif.ImageIFD.Model))
    if not make and not model:
        return None
    exif = container["Exif"]
    return CameraInfo(
        make=make,
        model=model,
        lens=_lens(container),
        aperture=format_aperture(exif.get(piexif.ExifIFD.FNumber)),
        shutter_speed=format_shutter_speed(exif.get(piexif.ExifIFD.ExposureTime)),
        iso=_iso(exif.get(piexif.ExifIFD.ISOSpeedRatings)),
        focal_length=format_focal_length(exif.get(piexif.ExifIFD.FocalLength)),
    )


# ---------------------------------------------------------------------------
# 详细 EXIF（属性面板）
# ---------------------------------------------------------------------------

_COLOR_SPACES = {1: "sRGB", 2: "Adobe RGB", 65535: "Uncalibrated"}
_WHITE_BALANCE = {0: "Auto", 1: "Manual"}
_METERING_MODES = {
    0: "Unknown",
    1: "Average",
    2: "Center-weighted average",
    3: "Spot",
    4: "Multi-spot",
    5: "Pattern",
    6: "Partial",
    255: "Other",
}


def _dms_to_degree(values: Any, ref: Any) -> float | None:
    if not isinstance(values, (list, tuple)) or len(values) != 3:
        return None
    try:
        d = _ratio_to_float(values[0])
        m = _ratio_to_float(values[1])
        s = _ratio_to_float(values[2])
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    degree = d + (m / 60.0) + (s / 3600.0)
    ref_text = decode_ascii(ref) or ""
    if ref_text.strip().upper() in {"S", "W"}:
        degree = -degree
    return degree


def _gps(container: RawContainer) -> dict[str, float] | None:
    gps = container["GPS"]
    lat = _dms_to_degree(gps.get(piexif.GPSIFD.GPSLatitude), gps.get(piexif.GPSIFD.GPSLatitudeRef))
    lon = _dms_to_degree(gps.get(piexif.GPSIFD.GPSLongitude), gps.get(piexif.GPSIFD.GPSLongitudeRef))
    if lat is None or lon is None:
        return None
    out = {"latitude": lat, "longitude": lon}
    alt = _safe_float(gps.get(piexif.GPSIFD.GPSAltitude))
    if alt is not None:
        # AltitudeRef 1 = 海平面以下
        out["altitude"] = -alt if gps.get(piexif.GPSIFD.GPSAltitudeRef) == 1 else alt
    return out


def _lookup(table: dict[int, str], value: Any) -> str | None:
    code = _iso(value)
    if code is None:
        return None
    return table.get(code, str(code))


def resolve_exif_details(container: RawContainer) -> ExifDetails:
    exif = container["Exif"]
    flash = _iso(exif.get(piexif.ExifIFD.Flash))
    date_time = None
    for raw in (exif.get(piexif.ExifIFD.DateTimeOriginal), container.get_field("0th", piexif.ImageIFD.DateTime)):
        date_time = parse_exif_datetime(raw)
        if date_time:
            break
    return ExifDetails(
        camera={
            "make": _text(container.get_field("0th", piexif.ImageIFD.Make)),
            "model": _text(container.get_field("0th", piexif.ImageIFD.Model)),
            "lens": _lens(container),
        },
        settings={
            "aperture": format_aperture(exif.get(piexif.ExifIFD.FNumber)),
            "shutter_speed": format_shutter_speed(exif.get(piexif.ExifIFD.ExposureTime)),
            "iso": _iso(exif.get(piexif.ExifIFD.ISOSpeedRatings)),
            "focal_length": format_focal_length(exif.get(piexif.ExifIFD.FocalLength)),
            # Flash 第 0 位 = 已闪光
            "flash": None if flash is None else bool(flash & 1),
        },
        location={"date_time": date_time, "gps": _gps(container)},
        technical={
            "color_space": _lookup(_COLOR_SPACES, exif.get(piexif.ExifIFD.ColorSpace)),
            "white_balance": _lookup(_WHITE_BALANCE, exif.get(piexif.ExifIFD.WhiteBalance)),
            "metering_mode": _lookup(_METERING_MODES, exif.get(piexif.ExifIFD.MeteringMode)),
        },
    )
