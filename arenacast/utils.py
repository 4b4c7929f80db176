"""
Utility functions for session ids, QR codes and sponsor uploads
"""
import base64
import binascii
import io
import os
import uuid
from pathlib import Path
from typing import Optional

import qrcode

from .errors import AssetWriteFailure, QRGenerationFailure


def generate_session_id() -> str:
    """Generate an opaque session id"""
    return "dev_" + uuid.uuid4().hex


def build_qr_data_url(data: str, box_size: int = 8, border: int = 2) -> str:
    """Render `data` as a PNG QR code and return it as a data URI"""
    try:
        qr = qrcode.QRCode(border=border, box_size=box_size)
        qr.add_data(data)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
    except Exception as e:
        raise QRGenerationFailure(str(e)) from e
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def sanitize_filename(file_name) -> str:
    """Strip directories so uploads cannot escape the uploads folder"""
    if not isinstance(file_name, str):
        raise AssetWriteFailure("fileName must be a string")
    name = os.path.basename(file_name.replace("\\", "/")).strip()
    if not name or name in (".", ".."):
        raise AssetWriteFailure(f"invalid file name: {file_name!r}")
    return name


def decode_file_data(file_data) -> bytes:
    """Decode base64 upload data, with or without a data: URI prefix"""
    if not isinstance(file_data, str):
        raise AssetWriteFailure("fileData must be a base64 string")
    if file_data.startswith("data:"):
        _, _, file_data = file_data.partition(",")
    try:
        return base64.b64decode(file_data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AssetWriteFailure(f"fileData is not valid base64: {e}") from e


def save_upload(uploads_dir: Path, file_name, file_data, max_bytes: Optional[int] = None) -> str:
    """
    Write a sponsor upload to disk and return its public URL.

    Blocking; callers on the event loop run it in an executor.
    """
    name = sanitize_filename(file_name)
    payload = decode_file_data(file_data)
    if max_bytes is not None and len(payload) > max_bytes:
        raise AssetWriteFailure(f"upload exceeds {max_bytes} bytes")

    try:
        uploads_dir = Path(uploads_dir)
        uploads_dir.mkdir(parents=True, exist_ok=True)
        (uploads_dir / name).write_bytes(payload)
    except OSError as e:
        raise AssetWriteFailure(f"could not write {name}: {e}") from e

    return f"/uploads/{name}"
