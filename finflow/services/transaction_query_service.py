"""
Transaction Query Service - the central read path.
"""
from typing import List, Optional
import logging

from sqlalchemy import select, func, distinct
from sqlalchemy.orm import Session

from finflow.core.exceptions import raise_validation_error
from finflow.models import Transaction, Category, Attachment
from finflow.schemas import TransactionFilter, TransactionPage, TransactionResponse
from finflow.services.attachment_store import AttachmentStore
from finflow.services.filter_compiler import compile_filters, resolve_sort

logger = logging.getLogger("finflow.transactions")


class TransactionQueryService:
    def __init__(self, db: Session):
        self.db = db

    def list(self, user_id: str, filters: TransactionFilter, limit: int, offset: int,
             base_url: str) -> TransactionPage:
        if limit is None or limit < 0:
            raise_validation_error("limit", "must be a non-negative integer", limit)
        if offset is None or offset < 0:
            raise_validation_error("offset", "must be a non-negative integer", offset)

        compiled = compile_filters(filters)
        sort = resolve_sort(filters.sort_by, filters.order)
        conditions = [Transaction.user_id == user_id, *compiled.clauses]

        total = self._count(conditions)
        items = self._fetch_page(conditions, sort, limit, offset, base_url) if limit else []

        logger.debug(f"Listed {len(items)} of {total} transactions for user {user_id}")
        return TransactionPage(
            items=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + limit < total,
        )

    def _count(self, conditions) -> int:
        stmt = (
            select(func.count(distinct(Transaction.id)))
            .select_from(Transaction)
            .join(Category, Category.id == Transaction.category_id)
            .where(*conditions)
        )
        return self.db.execute(stmt).scalar_one()

    def _fetch_page(self, conditions, sort, limit: int, offset: int, base_url: str) -> List[TransactionResponse]:
        # Paginate transactions first, then outer-join attachments onto the page,
        # so LIMIT/OFFSET count transactions rather than attachment rows.
        page = (
            select(
                Transaction.id.label("id"),
                Transaction.amount.label("amount"),
                Transaction.note.label("note"),
                Transaction.transaction_date.label("transaction_date"),
                Category.id.label("category_id"),
                Category.name.label("category_name"),
                Category.type.label("category_type"),
                sort.column.label("sort_key"),
            )
            .join(Category, Category.id == Transaction.category_id)
            .where(*conditions)
            .order_by(sort.apply(), Transaction.id)
            .limit(limit)
            .offset(offset)
            .subquery("page")
        )

        stmt = (
            select(page, Attachment)
            .outerjoin(Attachment, Attachment.transaction_id == page.c.id)
            .order_by(sort.apply(page.c.sort_key), page.c.id, Attachment.created_at, Attachment.id)
        )

        items = {}
        for row in self.db.execute(stmt):
            item = items.get(row.id)
            if item is None:
                item = items[row.id] = TransactionResponse(
                    id=row.id,
                    amount=row.amount,
                    note=row.note,
                    transaction_date=row.transaction_date,
                    category_id=row.category_id,
                    category_name=row.category_name,
                    category_type=row.category_type,
                    attachments=[],
                )
            attachment: Optional[Attachment] = row.Attachment
            if attachment is not None:
                item.attachments.append(AttachmentStore.format_for_response(attachment, base_url))
        return list(items.values())
