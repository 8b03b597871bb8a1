"""Local-disk storage for image and voice attachments."""
import secrets
import time
from pathlib import Path
from typing import Optional

from fastapi import HTTPException, UploadFile

from .logging_config import configure_logging
from .schemas import MessageOut

logger = configure_logging("media")

URL_PREFIX = "/uploads/"


async def save_upload(upload: UploadFile, field_name: str, upload_dir: Path, max_bytes: int) -> str:
    """Write an uploaded file to ``upload_dir`` and return its public reference."""
    content = await upload.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise HTTPException(status_code=413, detail=f"{field_name} exceeds {max_bytes} bytes")
    suffix = Path(upload.filename or "").suffix[:10]
    name = f"{field_name}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{suffix}"
    upload_dir.mkdir(parents=True, exist_ok=True)
    (upload_dir / name).write_bytes(content)
    logger.info("UPLOAD_STORED name=%s size=%s", name, len(content))
    return f"{URL_PREFIX}{name}"


def resolve_reference(reference: Optional[str], upload_dir: Path) -> Optional[Path]:
    """Map an ``/uploads/<name>`` reference to a file inside ``upload_dir``."""
    if not reference or not reference.startswith(URL_PREFIX):
        return None
    name = reference[len(URL_PREFIX):]
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        return None
    return upload_dir / name


def discard_attachments(record: MessageOut, upload_dir: Path) -> None:
    """Best-effort removal of a deleted message's stored files."""
    discard_files(upload_dir, record.image, record.voice, message_id=record.id)


def discard_files(upload_dir: Path, *references: Optional[str], message_id: str = "-") -> None:
    for reference in references:
        path = resolve_reference(reference, upload_dir)
        if path is None:
            continue
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.exception("UPLOAD_DELETE_FAILED path=%s message_id=%s", path, message_id)
