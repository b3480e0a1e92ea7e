"""Receipt image storage on the local filesystem."""
from __future__ import annotations

import io
import mimetypes
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from school_api import config
from school_api.errors import NotFoundError, StorageError, ValidationError
from school_api.utils.db import utcnow
from school_api.utils.logging import get_logger

logger = get_logger("storage")

NORMALISED_SIZE = (1200, 1200)
NORMALISED_QUALITY = 80

_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,8}$")


@dataclass(frozen=True)
class StoredReceipt:
    filename: str
    path: Path
    size: int
    content_type: str
    original_name: str | None
    uploaded_at: datetime

    @property
    def size_label(self) -> str:
        return f"{self.size / 1024:.2f} KB"


def _pick_extension(original_name: str | None, content_type: str) -> str:
    suffix = Path(original_name or "").suffix.lower()
    if _EXTENSION_RE.match(suffix):
        return suffix
    guessed = mimetypes.guess_extension(content_type) or ""
    return guessed if _EXTENSION_RE.match(guessed) else ".bin"


def _normalise_image(payload: bytes) -> bytes:
    try:
        with Image.open(io.BytesIO(payload)) as image:
            image.thumbnail(NORMALISED_SIZE)
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=NORMALISED_QUALITY)
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError("Uploaded file is not a readable image") from exc
    return buffer.getvalue()


class ReceiptStorage:
    """Validate and persist uploaded receipts under one directory.

    ``allowed_types`` holds exact MIME types; a value ending in ``/*`` accepts
    the whole family. When ``normalise`` is set, images are shrunk to fit
    within 1200x1200 and re-encoded as JPEG before they reach the disk.
    """

    def __init__(
        self,
        directory: Path,
        allowed_types: tuple[str, ...],
        *,
        max_bytes: int,
        normalise: bool = False,
    ) -> None:
        self.directory = Path(directory)
        self.allowed_types = allowed_types
        self.max_bytes = max_bytes
        self.normalise = normalise

    def _is_allowed(self, content_type: str) -> bool:
        for allowed in self.allowed_types:
            if allowed.endswith("/*"):
                if content_type.startswith(allowed[:-1]):
                    return True
            elif content_type == allowed:
                return True
        return False

    async def save(self, upload: UploadFile) -> StoredReceipt:
        content_type = (upload.content_type or "").lower()
        if not self._is_allowed(content_type):
            logger.warning(
                "Rejected upload with disallowed content type",
                extra={"content_type": content_type, "directory": str(self.directory)},
            )
            raise ValidationError(
                "Only image uploads are accepted",
                detail={"contentType": content_type, "allowed": list(self.allowed_types)},
            )

        payload = await upload.read(self.max_bytes + 1)
        if len(payload) > self.max_bytes:
            logger.warning(
                "Rejected upload exceeding size limit",
                extra={"limit": self.max_bytes, "directory": str(self.directory)},
            )
            raise ValidationError(
                "Uploaded file is too large",
                detail={"maxBytes": self.max_bytes},
            )
        if not payload:
            raise ValidationError("Uploaded file is empty")

        extension = _pick_extension(upload.filename, content_type)
        if self.normalise:
            payload = await run_in_threadpool(_normalise_image, payload)
            content_type = "image/jpeg"
            extension = ".jpg"

        filename = f"{uuid.uuid4()}{extension}"
        target = self.directory / filename
        try:
            await run_in_threadpool(self._write, target, payload)
        except OSError as exc:
            logger.exception("Failed to write receipt", extra={"path": str(target)})
            raise StorageError("Failed to store uploaded file") from exc

        logger.info(
            "Stored receipt",
            extra={"path": str(target), "size": len(payload), "content_type": content_type},
        )
        return StoredReceipt(
            filename=filename,
            path=target,
            size=len(payload),
            content_type=content_type,
            original_name=upload.filename,
            uploaded_at=utcnow(),
        )

    def _write(self, target: Path, payload: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)

    def resolve(self, filename: str) -> Path:
        """Return the stored file for ``filename`` or raise."""

        if not filename or "/" in filename or "\\" in filename or filename in {".", ".."}:
            raise ValidationError("Invalid file name")
        path = self.directory / filename
        if not path.is_file():
            raise NotFoundError("Receipt not found")
        return path

    def discard(self, path: Path | str | None) -> None:
        if not path:
            return
        target = Path(path)
        try:
            target.unlink()
        except FileNotFoundError:
            logger.warning("Receipt already removed", extra={"path": str(target)})
        except OSError:
            logger.exception("Failed to remove receipt", extra={"path": str(target)})
        else:
            logger.info("Removed receipt", extra={"path": str(target)})


RECEIPT_DIRECTORIES = {
    "payments": "payments",
    "course_payments": "course_payments",
    "payment_modal": "payment_modal",
}


def get_storage(variant: str) -> ReceiptStorage:
    """Build the storage for a checkout variant from the current configuration."""

    base = Path(config.UPLOAD_DIR)
    directory = base / RECEIPT_DIRECTORIES[variant]
    if variant == "payments":
        return ReceiptStorage(
            directory,
            ("image/jpeg", "image/png", "image/webp"),
            max_bytes=config.MAX_UPLOAD_BYTES,
        )
    if variant == "course_payments":
        return ReceiptStorage(
            directory,
            ("image/jpeg", "image/png", "image/webp", "image/gif"),
            max_bytes=config.MAX_UPLOAD_BYTES,
            normalise=True,
        )
    return ReceiptStorage(directory, ("image/*",), max_bytes=config.MAX_UPLOAD_BYTES)


__all__ = [
    "StoredReceipt",
    "ReceiptStorage",
    "RECEIPT_DIRECTORIES",
    "get_storage",
    "NORMALISED_SIZE",
    "NORMALISED_QUALITY",
]
