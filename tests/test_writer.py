import os
import shutil
import time

import piexif
import pytest

from conftest import xmp_packet
from image_meta.errors import CommitFailed, TagFieldShadowed, UnsupportedWriteFormat
from image_meta.exif_io import codec, writer
from image_meta.exif_io.reader import read_metadata
from image_meta.exif_io.writer import (
    apply_patch,
    wait_for_backup_cleanup,
    write_metadata,
    write_rating,
    write_tags,
)
from image_meta.models import MetadataPatch


def backup_of(path):
    return f"{path}.backup"


def test_tags_round_trip(make_jpeg):
    path = make_jpeg()
    result = write_tags(path, ["sunset", "beach", "2024", "sunset"])
    assert result.ok and result.code == "OK"
    assert read_metadata(path).tags == ("sunset", "beach", "2024")


def test_rating_round_trip_and_percent(make_jpeg):
    path = make_jpeg()
    assert write_rating(path, 4)
    container = codec.decode(path.read_bytes())
    assert container.get_field("0th", piexif.ImageIFD.Rating) == 4
    assert container.get_field("0th", piexif.ImageIFD.RatingPercent) == 75
    assert read_metadata(path).rating == 4


def test_partial_patch_keeps_other_fields(make_jpeg, camera_exif):
    path = make_jpeg(exif=camera_exif)
    assert write_rating(path, 2)
    assert write_tags(path, ["kept"])

    record = read_metadata(path)
    assert record.rating == 2
    assert record.tags == ("kept",)
    assert record.camera_info.model == "Canon EOS R5"

    assert write_rating(path, 5)
    assert read_metadata(path).tags == ("kept",)


def test_combined_patch_from_mapping(make_jpeg):
    path = make_jpeg()
    assert write_metadata(path, {"tags": ["a", "b"], "rating": 3})
    record = read_metadata(path)
    assert (record.tags, record.rating) == (("a", "b"), 3)


def test_empty_tag_list_clears_keywords(make_jpeg):
    path = make_jpeg()
    write_tags(path, ["one"])
    assert write_tags(path, [])
    assert read_metadata(path).tags == ()


def test_same_rating_twice_is_byte_identical(make_jpeg, camera_exif):
    once = make_jpeg(name="once.jpg", exif=camera_exif)
    twice = make_jpeg(name="twice.jpg", exif=camera_exif)
    assert once.read_bytes() == twice.read_bytes()

    write_rating(once, 3)
    write_rating(twice, 3)
    write_rating(twice, 3)
    assert once.read_bytes() == twice.read_bytes()


def test_xmp_segment_survives_a_write(make_jpeg):
    packet = xmp_packet(subject=["from", "lightroom"])
    path = make_jpeg(xmp=packet)
    assert write_rating(path, 1)
    assert packet.encode("utf-8") in path.read_bytes()


def test_backup_is_retired_after_success(make_jpeg):
    path = make_jpeg()
    assert write_tags(path, ["x"])
    assert wait_for_backup_cleanup(5)
    assert not os.path.exists(backup_of(path))


def test_backup_exists_until_retirement(make_jpeg, monkeypatch):
    path = make_jpeg()
    original = path.read_bytes()
    scheduled = []
    monkeypatch.setattr(writer, "schedule_backup_retirement", lambda p, delay: scheduled.append((p, delay)))

    assert write_rating(path, 5)

    assert scheduled == [(backup_of(path), 0.05)]
    with open(backup_of(path), "rb") as f:
        assert f.read() == original


def test_commit_failure_keeps_last_good_bytes(make_jpeg, monkeypatch):
    path = make_jpeg()
    original = path.read_bytes()

    def boom(target, data):
        raise OSError("disk full")

    monkeypatch.setattr(writer, "_commit", boom)
    result = write_rating(path, 5)

    assert not result.ok
    assert result.code == "CommitFailed"
    assert "disk full" in result.error
    wait_for_backup_cleanup(5)
    with open(backup_of(path), "rb") as f:
        assert f.read() == original
    assert path.read_bytes() == original


def test_encode_failure_is_a_commit_failure(make_jpeg, monkeypatch):
    path = make_jpeg()

    def broken_encode(container, original):
        raise ValueError("cannot pack")

    monkeypatch.setattr(codec, "encode", broken_encode)
    with pytest.raises(CommitFailed) as info:
        apply_patch(str(path), MetadataPatch(tags=["x"]))
    assert info.value.backup_path == backup_of(path)
    assert os.path.exists(backup_of(path))


def test_backup_failure_leaves_file_untouched(make_jpeg, monkeypatch):
    path = make_jpeg()
    original = path.read_bytes()

    def no_copy(src, dst, **kwargs):
        raise PermissionError("read-only directory")

    monkeypatch.setattr(writer.shutil, "copy2", no_copy)
    result = write_tags(path, ["x"])

    assert result.code == "BackupFailed"
    assert path.read_bytes() == original
    assert not os.path.exists(backup_of(path))


def test_png_is_refused_before_any_backup(make_png):
    path = make_png()
    original = path.read_bytes()
    result = write_rating(path, 3)
    assert result.code == "UnsupportedWriteFormat"
    assert path.read_bytes() == original
    assert not os.path.exists(backup_of(path))

    with pytest.raises(UnsupportedWriteFormat):
        apply_patch(str(path), MetadataPatch(rating=3))


def test_jpeg_bytes_under_png_name_are_refused(make_jpeg, tmp_path):
    disguised = tmp_path / "disguised.png"
    shutil.copy(make_jpeg(), disguised)
    assert write_rating(disguised, 2).code == "UnsupportedWriteFormat"


def test_missing_file_fails_at_backup(tmp_path):
    result = write_rating(tmp_path / "missing.jpg", 2)
    assert result.code == "BackupFailed"


@pytest.mark.parametrize("bad", [{}, {"rating": "5"}, {"tags": "a;b"}, {"title": "x"}])
def test_malformed_patch_is_a_failure_result(make_jpeg, bad):
    path = make_jpeg()
    original = path.read_bytes()
    result = write_metadata(path, bad)
    assert not result.ok
    assert result.code == "ValueError"
    assert path.read_bytes() == original


def test_negative_rating_is_a_commit_failure(make_jpeg):
    path = make_jpeg()
    original = path.read_bytes()
    result = write_rating(path, -1)
    assert result.code == "CommitFailed"
    assert path.read_bytes() == original


def test_out_of_range_rating_is_written_without_percent(make_jpeg):
    path = make_jpeg()
    assert write_rating(path, 7)
    container = codec.decode(path.read_bytes())
    assert container.get_field("0th", piexif.ImageIFD.Rating) == 7
    assert container.get_field("0th", piexif.ImageIFD.RatingPercent) is None
    assert read_metadata(path).rating == 7


def test_retirement_failure_is_only_logged(tmp_path):
    stuck = tmp_path / "photo.jpg.backup"
    stuck.mkdir()
    writer._retire_backup(str(stuck))
    assert stuck.exists()


def test_earlier_retirement_does_not_delete_a_later_backup(make_jpeg, monkeypatch):
    path = make_jpeg()
    assert write_rating(path, 2)
    last_good = path.read_bytes()

    def boom(target, data):
        raise OSError("disk full")

    monkeypatch.setattr(writer, "_commit", boom)
    assert write_rating(path, 4).code == "CommitFailed"

    # well past the first write's grace delay
    time.sleep(0.3)
    wait_for_backup_cleanup(5)
    with open(backup_of(path), "rb") as f:
        assert f.read() == last_good
    assert path.read_bytes() == last_good


def test_stale_timer_leaves_backup_alone(tmp_path):
    backup = tmp_path / "photo.jpg.backup"
    backup.write_bytes(b"snapshot")
    first = writer.schedule_backup_retirement(str(backup), 60)
    second = writer.schedule_backup_retirement(str(backup), 60)
    try:
        writer._retire_backup(str(backup), first)
        assert backup.exists()
        writer._retire_backup(str(backup), second)
        assert not backup.exists()
    finally:
        first.cancel()
        second.cancel()
    assert wait_for_backup_cleanup(1)


def test_write_keeps_jfif_header(make_jpeg):
    path = make_jpeg()
    assert write_rating(path, 3)
    data = path.read_bytes()
    assert data[2:4] == b"\xff\xe0"
    assert data[6:11] == b"JFIF\x00"
    assert read_metadata(path).rating == 3


@pytest.mark.parametrize("tags", [["Smith, John"], ["a|b"], ["Smith, John", "a|b", "plain"]])
def test_tags_with_other_separators_round_trip(make_jpeg, tags):
    path = make_jpeg()
    assert write_tags(path, tags)
    assert list(read_metadata(path).tags) == tags


@pytest.mark.parametrize("tags", [["a;b"], ["  "], ["ok", ""]])
def test_unstorable_tags_are_refused(make_jpeg, tags):
    path = make_jpeg()
    original = path.read_bytes()
    result = write_tags(path, tags)
    assert result.code == "ValueError"
    assert path.read_bytes() == original
    assert not os.path.exists(backup_of(path))


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"iptc_keywords": ["old"]}, "Keywords"),
        ({"xmp": xmp_packet(subject=["old"])}, "Subject"),
    ],
)
def test_tags_below_a_preferred_keyword_field_are_refused(make_jpeg, kwargs, field):
    path = make_jpeg(**kwargs)
    original = path.read_bytes()

    result = write_tags(path, ["new"])

    assert not result.ok
    assert result.code == "TagFieldShadowed"
    assert field in result.error
    assert path.read_bytes() == original
    assert not os.path.exists(backup_of(path))
    assert read_metadata(path).tags == ("old",)

    with pytest.raises(TagFieldShadowed) as info:
        apply_patch(str(path), MetadataPatch(tags=["new"]))
    assert info.value.field == field


def test_rating_is_still_written_next_to_preferred_keywords(make_jpeg):
    path = make_jpeg(iptc_keywords=["old"])
    assert write_rating(path, 4)
    record = read_metadata(path)
    assert (record.tags, record.rating) == (("old",), 4)


def test_tags_write_is_allowed_above_hierarchical_subject(make_jpeg):
    path = make_jpeg(xmp=xmp_packet(hierarchical=["Places|Beach"]))
    assert write_tags(path, ["beach"])
    assert read_metadata(path).tags == ("beach",)
