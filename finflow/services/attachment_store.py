"""
Attachment Store

Content-addressed persistence of transaction attachments: hashing, duplicate
detection scoped to one transaction, disk write/delete, and DB linkage.

The store never commits. It works on the caller's session so that attachment
rows live and die with the caller's unit of work; files written to disk are
reported back through the caller's ``written`` list for compensating cleanup.
Removal splits the same way: rows go inside the unit of work, files after it.
"""
import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Union

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from finflow.config import settings
from finflow.core.exceptions import raise_validation_error
from finflow.models import Attachment
from finflow.schemas import AttachmentResponse, CleanupFailure

logger = logging.getLogger("finflow.attachments")

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "application/pdf": ".pdf",
}


@dataclass
class FilePayload:
    content: bytes
    filename: str
    content_type: str


class _Skipped:
    def __repr__(self):
        return "SKIPPED"


SKIPPED = _Skipped()


@dataclass
class StoredFile:
    attachment_id: Optional[str]
    file_path: str


@dataclass
class RemovalReport:
    removed_ids: List[str] = field(default_factory=list)
    files: List[StoredFile] = field(default_factory=list)


def validate_payloads(payloads: Iterable[FilePayload]) -> None:
    """Reject unsupported, empty or oversized files before any store access."""
    for payload in payloads:
        content_type = (payload.content_type or "").strip().lower()
        if content_type not in settings.allowed_attachment_types:
            raise_validation_error(
                "files", "Only JPG, PNG images and PDF files are allowed.", payload.filename
            )
        if not payload.content:
            raise_validation_error("files", "Attachment is empty.", payload.filename)
        if len(payload.content) > settings.max_attachment_bytes:
            raise_validation_error(
                "files",
                f"Attachment too large. Max size is {settings.max_attachment_bytes} bytes.",
                payload.filename,
            )


def normalize_path(file_path: str) -> str:
    return file_path.replace("\\", "/")


class AttachmentStore:
    def __init__(self, db: Session, media_root: Optional[Union[str, Path]] = None,
                 upload_subdir: Optional[str] = None):
        self.db = db
        self.media_root = Path(media_root if media_root is not None else settings.media_root)
        self.upload_subdir = upload_subdir or settings.upload_subdir

    @staticmethod
    def compute_digest(content: bytes) -> str:
        return hashlib.sha256(content).hexdigest()

    def absolute_path(self, file_path: str) -> Path:
        return self.media_root / normalize_path(file_path)

    def is_duplicate(self, transaction_id: str, digest: str) -> bool:
        stmt = select(Attachment.id).where(
            Attachment.transaction_id == transaction_id,
            Attachment.content_hash == digest,
        )
        return self.db.execute(stmt).first() is not None

    def persist(self, transaction_id: str, payload: FilePayload, written: List[Path]):
        """
        Store one uploaded file for a transaction.

        Returns the new Attachment, or SKIPPED when byte-identical content is
        already linked to this transaction. The duplicate check runs before the
        disk write, so a skipped file never touches disk. Every path written is
        appended to ``written`` before the row is inserted.
        """
        digest = self.compute_digest(payload.content)
        if self.is_duplicate(transaction_id, digest):
            logger.info(f"Skipping duplicate attachment {payload.filename} for transaction {transaction_id}")
            return SKIPPED

        content_type = payload.content_type.strip().lower()
        suffix = Path(payload.filename or "").suffix or EXTENSIONS.get(content_type, "")
        relative = PurePosixPath(self.upload_subdir) / f"{uuid.uuid4().hex}{suffix}"
        target = self.absolute_path(str(relative))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload.content)
        written.append(target)

        record = Attachment(
            transaction_id=transaction_id,
            file_name=(payload.filename or target.name).strip()[:255],
            file_path=str(relative),
            file_type=content_type,
            file_size=len(payload.content),
            content_hash=digest,
        )
        self._save_record(record)
        logger.debug(f"Stored attachment {record.id} at {relative}")
        return record

    def _save_record(self, record: Attachment) -> None:
        self.db.add(record)
        # Flush so a later duplicate in the same request sees this row.
        self.db.flush()

    def remove(self, attachment_ids: Iterable[str], transaction_id: str) -> RemovalReport:
        """
        Delete attachment rows of one transaction, leaving their files on disk.

        The returned report lists the removed ids and the stored files they
        pointed at. Unlink those with ``delete_files`` only after the caller's
        unit of work has committed, so a rollback never restores a row whose
        file is already gone.
        """
        report = RemovalReport()
        ids = list(dict.fromkeys(attachment_ids))
        if not ids:
            return report

        rows = self.db.execute(
            select(Attachment.id, Attachment.file_path).where(
                Attachment.id.in_(ids),
                Attachment.transaction_id == transaction_id,
            )
        ).all()
        if not rows:
            return report

        for attachment_id, file_path in rows:
            report.removed_ids.append(attachment_id)
            report.files.append(StoredFile(attachment_id=attachment_id, file_path=file_path))

        self.db.execute(
            delete(Attachment)
            .where(Attachment.id.in_(report.removed_ids))
            .execution_options(synchronize_session=False)
        )
        return report

    def delete_files(self, files: Iterable[StoredFile]) -> List[CleanupFailure]:
        """
        Best-effort deletion of stored files; returns what could not be removed.

        Every file is attempted. A file that is already gone counts as removed.
        """
        failures = []
        for stored in files:
            failure = self._unlink(stored.file_path, stored.attachment_id)
            if failure:
                failures.append(failure)
        return failures

    def discard(self, written: Iterable[Path]) -> None:
        """Compensating cleanup for files written during a failed attempt."""
        for path in written:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to discard orphaned file {path}: {e}")

    def _unlink(self, file_path: str, attachment_id: Optional[str] = None) -> Optional[CleanupFailure]:
        try:
            self.absolute_path(file_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete attachment file {file_path}: {e}")
            return CleanupFailure(attachment_id=attachment_id, file_path=file_path, error=str(e))
        return None

    @staticmethod
    def format_for_response(record, base_url: str) -> AttachmentResponse:
        clean_path = normalize_path(record.file_path)
        return AttachmentResponse(
            id=record.id,
            file_name=record.file_name,
            file_path=clean_path,
            file_type=record.file_type,
            file_size=record.file_size,
            url=f"{base_url.rstrip('/')}/{clean_path.lstrip('/')}",
        )
