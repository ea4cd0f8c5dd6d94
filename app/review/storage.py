from __future__ import annotations

import hashlib
import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from app.core.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredFile:
    name: str
    path: str
    sha256: str
    size: int
    mime_type: str | None


def storage_root() -> Path:
    configured = current_app.config.get("STORAGE_ROOT") or ""
    if configured:
        return Path(configured)
    return Path(current_app.instance_path) / "storage"


def store_file(file_obj: FileStorage | None, folder: str, document_type: str) -> StoredFile:
    if not file_obj or not file_obj.filename:
        raise ValidationError(f"A file is required for {document_type}")

    data = file_obj.read()
    if not data:
        raise ValidationError(f"Uploaded file for {document_type} is empty")
    max_bytes = int(current_app.config.get("MAX_UPLOAD_MB", 10)) * 1024 * 1024
    if len(data) > max_bytes:
        raise ValidationError(f"File for {document_type} exceeds {current_app.config.get('MAX_UPLOAD_MB', 10)} MB")

    filename = secure_filename(file_obj.filename) or f"{document_type}.bin"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
    relative = Path("applications") / secure_filename(folder) / document_type / f"{stamp}-{filename}"
    absolute = storage_root() / relative
    absolute.parent.mkdir(parents=True, exist_ok=True)
    absolute.write_bytes(data)

    mime_type = file_obj.mimetype or mimetypes.guess_type(filename)[0]
    stored = StoredFile(
        name=filename,
        path=relative.as_posix(),
        sha256=hashlib.sha256(data).hexdigest(),
        size=len(data),
        mime_type=mime_type or None,
    )
    logger.info("Stored %s for %s at %s (%d bytes)", document_type, folder, stored.path, stored.size)
    return stored


def discard(stored: StoredFile) -> None:
    """Remove a file whose database record was never committed."""
    absolute = storage_root() / stored.path
    absolute.unlink(missing_ok=True)
    logger.info("Discarded orphan upload %s", stored.path)
