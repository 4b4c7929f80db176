"""
Tests for id generation, QR rendering and upload storage helpers.
"""

import base64

import pytest

from arenacast.errors import AssetWriteFailure
from arenacast.utils import (
    build_qr_data_url, decode_file_data, generate_session_id,
    sanitize_filename, save_upload,
)


def test_generate_session_id_is_unique():
    ids = {generate_session_id() for _ in range(1000)}

    assert len(ids) == 1000
    assert all(sid.startswith("dev_") for sid in ids)


def test_build_qr_data_url():
    url = build_qr_data_url("https://192.168.0.13:3000/mobile")

    assert url.startswith("data:image/png;base64,")
    png = base64.b64decode(url.split(",", 1)[1])
    assert png.startswith(b"\x89PNG")


class TestUploads:
    """Sponsor upload helpers."""

    @pytest.mark.parametrize("raw,expected", [
        ("logo.png", "logo.png"),
        ("../../etc/passwd", "passwd"),
        ("C:\\temp\\ram.jpg", "ram.jpg"),
        ("  spaced.gif ", "spaced.gif"),
    ])
    def test_sanitize_filename(self, raw, expected):
        assert sanitize_filename(raw) == expected

    @pytest.mark.parametrize("raw", ["", "..", "uploads/", None, 42])
    def test_sanitize_filename_rejects(self, raw):
        with pytest.raises(AssetWriteFailure):
            sanitize_filename(raw)

    def test_decode_plain_and_data_uri(self):
        encoded = base64.b64encode(b"hello").decode()

        assert decode_file_data(encoded) == b"hello"
        assert decode_file_data("data:image/png;base64," + encoded) == b"hello"

    @pytest.mark.parametrize("raw", ["not base64!", None, b"aGk="])
    def test_decode_rejects(self, raw):
        with pytest.raises(AssetWriteFailure):
            decode_file_data(raw)

    def test_save_upload(self, tmp_path):
        uploads = tmp_path / "nested" / "uploads"

        url = save_upload(uploads, "ram.png", base64.b64encode(b"img").decode())

        assert url == "/uploads/ram.png"
        assert (uploads / "ram.png").read_bytes() == b"img"

    def test_save_upload_size_limit(self, tmp_path):
        with pytest.raises(AssetWriteFailure):
            save_upload(tmp_path, "big.png", base64.b64encode(b"x" * 11).decode(), max_bytes=10)
        assert not (tmp_path / "big.png").exists()

    def test_save_upload_write_error(self, tmp_path):
        blocker = tmp_path / "uploads"
        blocker.write_text("a file, not a directory")

        with pytest.raises(AssetWriteFailure):
            save_upload(blocker, "ram.png", base64.b64encode(b"img").decode())
