import json
import struct
from pathlib import Path

import piexif
import pytest
from PIL import Image, PngImagePlugin

from image_meta.exif_io.config import get_settings
from image_meta.exif_io.writer import wait_for_backup_cleanup

XMP_APP1_HEADER = b"http://ns.adobe.com/xap/1.0/\x00"


def xmp_packet(subject=None, hierarchical=None, rating=None) -> str:
    def bag(prefix, name, items):
        lis = "".join(f"<rdf:li>{i}</rdf:li>" for i in items)
        return f"<{prefix}:{name}><rdf:Bag>{lis}</rdf:Bag></{prefix}:{name}>"

    attrs = f' xmp:Rating="{rating}"' if rating is not None else ""
    body = ""
    if subject is not None:
        body += bag("dc", "subject", subject)
    if hierarchical is not None:
        body += bag("lr", "hierarchicalSubject", hierarchical)
    return (
        '<?xpacket begin="\ufeff" id="W5M0MpCehiHzreSzNTczkc9d"?>'
        '<x:xmpmeta xmlns:x="adobe:ns:meta/">'
        '<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#">'
        '<rdf:Description rdf:about=""'
        ' xmlns:dc="http://purl.org/dc/elements/1.1/"'
        ' xmlns:xmp="http://ns.adobe.com/xap/1.0/"'
        ' xmlns:lr="http://ns.adobe.com/lightroom/1.0/"'
        f"{attrs}>{body}</rdf:Description>"
        "</rdf:RDF></x:xmpmeta>"
        '<?xpacket end="w"?>'
    )


def _segment(marker: bytes, payload: bytes) -> bytes:
    return marker + struct.pack(">H", len(payload) + 2) + payload


def _insert_after_first_segment(data: bytes, segment: bytes) -> bytes:
    """Place segment behind the leading JFIF / EXIF segment, where cameras put XMP and IPTC."""
    assert data[:2] == b"\xff\xd8"
    offset = 4 + struct.unpack(">H", data[4:6])[0]
    return data[:offset] + segment + data[offset:]


def _iptc_keywords_app13(keywords) -> bytes:
    iptc = b"".join(
        b"\x1c\x02\x19" + struct.pack(">H", len(k.encode("utf-8"))) + k.encode("utf-8") for k in keywords
    )
    if len(iptc) % 2:
        iptc += b"\x00"
    resource = b"8BIM" + struct.pack(">H", 0x0404) + b"\x00\x00" + struct.pack(">I", len(iptc)) + iptc
    return _segment(b"\xff\xed", b"Photoshop 3.0\x00" + resource)


def empty_exif() -> dict:
    return {"0th": {}, "Exif": {}, "GPS": {}, "Interop": {}, "1st": {}, "thumbnail": None}


@pytest.fixture(autouse=True)
def engine_config(tmp_path, monkeypatch):
    """Short backup grace delay so retirements finish inside the test."""
    cfg = tmp_path / "engine_override.json"
    cfg.write_text(json.dumps({"backup_retire_delay_sec": 0.05}), encoding="utf-8")
    monkeypatch.setenv("IMAGE_META_CONFIG", str(cfg))
    get_settings.cache_clear()
    yield cfg
    wait_for_backup_cleanup(5)
    get_settings.cache_clear()


@pytest.fixture
def make_jpeg(tmp_path):
    def _make(name="photo.jpg", exif=None, xmp=None, iptc_keywords=None, color=(200, 40, 40)) -> Path:
        path = tmp_path / name
        Image.new("RGB", (16, 12), color).save(path, "JPEG", quality=90)
        if exif is not None:
            piexif.insert(piexif.dump(exif), str(path))
        data = path.read_bytes()
        if xmp is not None:
            data = _insert_after_first_segment(data, _segment(b"\xff\xe1", XMP_APP1_HEADER + xmp.encode("utf-8")))
        if iptc_keywords is not None:
            data = _insert_after_first_segment(data, _iptc_keywords_app13(iptc_keywords))
        path.write_bytes(data)
        return path

    return _make


@pytest.fixture
def make_png(tmp_path):
    def _make(name="graphic.png", exif=None, xmp=None) -> Path:
        path = tmp_path / name
        params = {}
        if exif is not None:
            params["exif"] = piexif.dump(exif)
        if xmp is not None:
            info = PngImagePlugin.PngInfo()
            info.add_itxt("XML:com.adobe.xmp", xmp)
            params["pnginfo"] = info
        Image.new("RGB", (8, 8), (10, 120, 200)).save(path, "PNG", **params)
        return path

    return _make


@pytest.fixture
def make_tiff(tmp_path):
    def _make(name="scan.tif", description=None) -> Path:
        path = tmp_path / name
        tiffinfo = {}
        if description is not None:
            tiffinfo[270] = description
        Image.new("RGB", (8, 8), (90, 90, 90)).save(path, "TIFF", tiffinfo=tiffinfo)
        return path

    return _make


@pytest.fixture
def camera_exif():
    exif = empty_exif()
    exif["0th"][piexif.ImageIFD.Make] = b"Canon"
    exif["0th"][piexif.ImageIFD.Model] = b"Canon EOS R5"
    exif["0th"][piexif.ImageIFD.DateTime] = b"2023:05:02 10:00:00"
    exif["Exif"][piexif.ExifIFD.DateTimeOriginal] = b"2023:05:01 14:30:15"
    exif["Exif"][piexif.ExifIFD.FNumber] = (28, 10)
    exif["Exif"][piexif.ExifIFD.ExposureTime] = (1, 250)
    exif["Exif"][piexif.ExifIFD.ISOSpeedRatings] = 400
    exif["Exif"][piexif.ExifIFD.FocalLength] = (50, 1)
    exif["Exif"][piexif.ExifIFD.LensModel] = b"RF50mm F1.8 STM"
    return exif
