# -*- coding: utf-8 -*-
"""
把内嵌 XMP 包（JPEG APP1、PNG iTXt、TIFF tag 700）解析成扁平的 ``{"prefix:Name": value}``。
rdf:Bag / rdf:Seq / rdf:Alt 转为列表，简单属性和行内属性转为字符串。
"""
from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Union

from image_meta.log import get_logger

log = get_logger("exif_io.xmp_packet")

XmpValue = Union[str, list[str]]

# 常见命名空间 URL → 前缀（含属性里出现的无尾斜杠写法）
_NS_PREFIXES: dict[str, str] = {
    "http://www.w3.org/1999/02/22-rdf-syntax-ns#": "rdf",
    "http://purl.org/dc/elements/1.1/": "dc",
    "http://ns.adobe.com/xap/1.0/": "xmp",
    "http://ns.adobe.com/xap/1.0": "xmp",
    "http://ns.adobe.com/xap/1.0/mm/": "xmpMM",
    "http://ns.adobe.com/exif/1.0/": "exif",
    "http://ns.adobe.com/tiff/1.0/": "tiff",
    "http://ns.adobe.com/photoshop/1.0/": "photoshop",
    "http://iptc.org/std/Iptc4xmpCore/1.0/xmlns/": "Iptc4xmpCore",
    "http://ns.adobe.com/lightroom/1.0/": "lr",
    "http://ns.adobe.com/camera-raw-settings/1.0/": "crs",
    "http://ns.microsoft.com/photo/1.0/": "MicrosoftPhoto",
    "http://ns.microsoft.com/photo/1.0": "MicrosoftPhoto",
    "http://ns.adobe.com/exif/1.0/aux/": "aux",
    "http://ns.adobe.com/xmp/1.0/DynamicMedia/": "xmpDM",
}

_RDF_NS = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"


def _ns_to_prefix(ns_url: str) -> str:
    if ns_url in _NS_PREFIXES:
        return _NS_PREFIXES[ns_url]
    stripped = ns_url.rstrip("/").rstrip("#")
    parts = stripped.split("/")
    for part in reversed(parts):
        part = part.strip()
        if part and not part.startswith("http") and len(part) <= 30:
            return part
    return "xmp"


def _split_tag(tag: str) -> tuple[str, str] | None:
    if not tag.startswith("{"):
        return None
    ns_url, local = tag[1:].split("}", 1)
    return ns_url, local


def _element_value(element) -> XmpValue | None:
    for container_tag in ("Bag", "Seq", "Alt"):
        container = element.find(f"{{{_RDF_NS}}}{container_tag}")
        if container is not None:
            items = [(li.text or "").strip() for li in container.findall(f"{{{_RDF_NS}}}li")]
            items = [t for t in items if t]
            return items or None

    if element.text and element.text.strip():
        return element.text.strip()

    # rdf:resource / rdf:value 形式的简单值
    for attr in (f"{{{_RDF_NS}}}resource", f"{{{_RDF_NS}}}value"):
        val = (element.attrib.get(attr) or "").strip()
        if val:
            return val
    return None


def _to_text(packet: bytes | str) -> str:
    if isinstance(packet, bytes):
        text = packet.decode("utf-8", errors="replace")
    else:
        text = str(packet)
    # 结尾处理指令后的 NUL 填充在 XMP 中合法，但不是合法 XML
    return text.replace("\x00", "").strip()


def parse_xmp_packet(packet: bytes | str | None) -> dict[str, XmpValue]:
    """返回 ``{"dc:subject": [...], "xmp:Rating": "3", ...}``；缺失或无法解析时返回 {}。"""
    if not packet:
        return {}
    try:
        root = ET.fromstring(_to_text(packet))
    except ET.ParseError as exc:
        log.debug("unparsable XMP packet: %s", exc)
        return {}

    fields: dict[str, XmpValue] = {}
    for desc in root.iter(f"{{{_RDF_NS}}}Description"):
        for attr_key, attr_val in desc.attrib.items():
            split = _split_tag(attr_key)
            if not split or split[0] == _RDF_NS:
                continue
            val = (attr_val or "").strip()
            if val:
                fields.setdefault(f"{_ns_to_prefix(split[0])}:{split[1]}", val)

        for child in desc:
            split = _split_tag(child.tag)
            if not split or split[0] == _RDF_NS:
                continue
            value = _element_value(child)
            if value:
                fields.setdefault(f"{_ns_to_prefix(split[0])}:{split[1]}", value)
    return fields
