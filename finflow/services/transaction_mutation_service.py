"""
Transaction Mutation Coordinator

Creates, updates and deletes transactions together with their attachments.
Each operation is one unit of work on a single session. The filesystem does
not share the database's commit, so files written during a failed attempt are
deleted before the error propagates, and files of removed attachments are
only unlinked once the removal has committed.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from finflow.core.exceptions import BaseAppException, StorageError, raise_not_found, raise_validation_error
from finflow.models import Transaction
from finflow.schemas import CleanupFailure, MutationResult, TransactionCreate, TransactionPatch
from finflow.services.attachment_store import AttachmentStore, FilePayload, SKIPPED, StoredFile, validate_payloads
from finflow.services.category_lookup import CategoryLookup

logger = logging.getLogger("finflow.transactions")


class TransactionMutationService:
    def __init__(self, db: Session, store: Optional[AttachmentStore] = None, base_url: str = ""):
        self.db = db
        # The store must share this session: attachment rows belong to our unit of work.
        self.store = store if store is not None else AttachmentStore(db)
        if self.store.db is not db:
            raise ValueError("AttachmentStore must use the coordinator's session")
        self.categories = CategoryLookup(db)
        self.base_url = base_url

    @contextmanager
    def _unit_of_work(self, action: str):
        """Commit on success; on failure roll back and discard files written in the attempt."""
        written: List[Path] = []
        try:
            yield written
            self.db.commit()
        except BaseAppException:
            self.db.rollback()
            self.store.discard(written)
            raise
        except (SQLAlchemyError, OSError) as e:
            self.db.rollback()
            self.store.discard(written)
            logger.error(f"Failed to {action} transaction: {e}", exc_info=True)
            raise StorageError(f"Failed to {action} transaction", {"action": action}) from e

    def _check_category(self, category_id: str, user_id: str) -> None:
        if self.categories.get_usable(category_id, user_id) is None:
            raise_validation_error("category_id", "Invalid or inactive category", category_id)

    def _attach(self, transaction_id: str, files: Iterable[FilePayload], written: List[Path],
                result: MutationResult) -> None:
        for payload in files:
            record = self.store.persist(transaction_id, payload, written)
            if record is SKIPPED:
                result.duplicates_skipped += 1
            else:
                result.attachments_added.append(self.store.format_for_response(record, self.base_url))

    def add(self, user_id: str, data: TransactionCreate,
            files: Optional[List[FilePayload]] = None) -> MutationResult:
        files = files or []
        validate_payloads(files)
        logger.info(f"Creating transaction for user {user_id} with {len(files)} file(s)")

        with self._unit_of_work("create") as written:
            self._check_category(data.category_id, user_id)
            txn = Transaction(
                user_id=user_id,
                category_id=data.category_id,
                amount=data.amount,
                note=data.note,
                transaction_date=data.transaction_date,
            )
            self.db.add(txn)
            self.db.flush()
            result = MutationResult(transaction_id=txn.id)
            self._attach(txn.id, files, written, result)

        logger.info(f"Created transaction {result.transaction_id} "
                    f"({len(result.attachments_added)} attachment(s), {result.duplicates_skipped} duplicate(s))")
        return result

    def update(self, user_id: str, transaction_id: str, patch: Optional[TransactionPatch] = None,
               delete_attachment_ids: Optional[List[str]] = None,
               files: Optional[List[FilePayload]] = None) -> MutationResult:
        changes = patch.changes() if patch is not None else {}
        delete_attachment_ids = [i for i in (delete_attachment_ids or []) if i]
        files = files or []
        if not changes and not delete_attachment_ids and not files:
            raise_validation_error("update", "No changes supplied")
        validate_payloads(files)
        logger.info(f"Updating transaction {transaction_id} for user {user_id}: "
                    f"fields={sorted(changes)}, remove={len(delete_attachment_ids)}, add={len(files)}")

        result = MutationResult(transaction_id=transaction_id)
        removed: List[StoredFile] = []
        with self._unit_of_work("update") as written:
            if not self._owned_exists(user_id, transaction_id):
                raise_not_found("Transaction", transaction_id)
            if "category_id" in changes:
                self._check_category(changes["category_id"], user_id)

            if changes:
                updated = self.db.execute(
                    update(Transaction)
                    .where(Transaction.id == transaction_id, Transaction.user_id == user_id)
                    .values(**changes)
                    .execution_options(synchronize_session=False)
                )
                if updated.rowcount == 0:
                    raise_not_found("Transaction", transaction_id)

            if delete_attachment_ids:
                report = self.store.remove(delete_attachment_ids, transaction_id)
                result.attachments_removed = report.removed_ids
                removed = report.files

            self._attach(transaction_id, files, written, result)

        result.cleanup_failures = self._delete_committed_files(removed)
        return result

    def delete(self, user_id: str, transaction_id: str) -> MutationResult:
        logger.info(f"Deleting transaction {transaction_id} for user {user_id}")
        result = MutationResult(transaction_id=transaction_id)

        with self._unit_of_work("delete"):
            txn = self.db.execute(
                select(Transaction).where(Transaction.id == transaction_id, Transaction.user_id == user_id)
            ).scalar_one_or_none()
            if txn is None:
                raise_not_found("Transaction", transaction_id)

            removed = [StoredFile(attachment_id=a.id, file_path=a.file_path) for a in txn.attachments]
            result.attachments_removed = [f.attachment_id for f in removed]
            # Attachment rows go with the transaction via cascade.
            self.db.delete(txn)
            self.db.flush()

        result.cleanup_failures = self._delete_committed_files(removed)
        return result

    def _delete_committed_files(self, files: List[StoredFile]) -> List[CleanupFailure]:
        # Runs after commit: a failure here leaves an orphaned file, never a row without its file.
        failures = self.store.delete_files(files)
        for failure in failures:
            logger.warning(f"Orphaned attachment file {failure.file_path} "
                           f"(attachment {failure.attachment_id}): {failure.error}")
        return failures

    def _owned_exists(self, user_id: str, transaction_id: str) -> bool:
        stmt = select(Transaction.id).where(Transaction.id == transaction_id, Transaction.user_id == user_id)
        return self.db.execute(stmt).first() is not None
