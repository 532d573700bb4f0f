from pathlib import Path

import pytest

from heic_converter.errors import IoError
from heic_converter.file_operations import (
    default_save_name,
    format_size,
    generate_unique_filename,
    get_file_size,
    save_output,
)


def test_get_file_size(tmp_path: Path):
    p = tmp_path / "a.heic"
    p.write_bytes(b"x" * 10)
    assert get_file_size(p) == 10
    assert get_file_size(tmp_path / "missing.heic") == 0


@pytest.mark.parametrize(
    ("size", "text"),
    [(0, "0 B"), (512, "512 B"), (1024, "1 KB"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5 MB")],
)
def test_format_size(size: int, text: str):
    assert format_size(size) == text


def test_format_size_rejects_negative():
    with pytest.raises(ValueError):
        format_size(-1)


@pytest.mark.parametrize(
    ("name", "expected"),
    [("IMG_0001.HEIC", "IMG_0001.jpg"), ("a.heif", "a.jpg"), ("b.heic", "b.jpg"), ("raw", "raw.jpg")],
)
def test_default_save_name(name: str, expected: str):
    assert default_save_name(name) == expected


def test_generate_unique_filename(tmp_path: Path):
    assert generate_unique_filename(tmp_path, "a.jpg") == tmp_path / "a.jpg"
    (tmp_path / "a.jpg").write_bytes(b"1")
    assert generate_unique_filename(tmp_path, "a.jpg") == tmp_path / "a (1).jpg"
    (tmp_path / "a (1).jpg").write_bytes(b"2")
    assert generate_unique_filename(tmp_path, "a.jpg") == tmp_path / "a (2).jpg"


def test_save_output_copies_and_creates_parents(tmp_path: Path):
    src = tmp_path / "x_converted.jpg"
    src.write_bytes(b"\xff\xd8jpeg")
    dest = tmp_path / "out" / "deep" / "photo.jpg"
    assert save_output(src, dest) == dest
    assert dest.read_bytes() == b"\xff\xd8jpeg"
    assert src.exists()


def test_save_output_missing_source(tmp_path: Path):
    with pytest.raises(IoError) as exc:
        save_output(tmp_path / "gone.jpg", tmp_path / "photo.jpg")
    assert exc.value.op == "save"
    assert "converted file not found" in str(exc.value)


def test_save_output_to_directory_fails(tmp_path: Path):
    src = tmp_path / "x.jpg"
    src.write_bytes(b"data")
    target = tmp_path / "dir"
    target.mkdir()
    with pytest.raises(IoError):
        save_output(src, target)
