"""
Transactions router: thin HTTP adapter over the query service and the
mutation coordinator.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
import logging

from finflow import schemas
from finflow.auth import get_current_user
from finflow.config import settings
from finflow.core.dependencies import get_base_url, get_mutation_service, get_query_service
from finflow.models import User
from finflow.services.attachment_store import FilePayload
from finflow.services.transaction_mutation_service import TransactionMutationService
from finflow.services.transaction_query_service import TransactionQueryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


def get_transaction_filter(
    start_date: Optional[date] = Query(None, description="Inclusive lower date bound"),
    end_date: Optional[date] = Query(None, description="Inclusive upper date bound"),
    category_ids: Optional[List[str]] = Query(None, description="Restrict to these categories"),
    type: Optional[str] = Query(None, description="Income or Expense"),
    min_amount: Optional[Decimal] = Query(None),
    max_amount: Optional[Decimal] = Query(None),
    search: Optional[str] = Query(None, description="Substring of note or category name"),
    sort_by: str = Query("date", description="date, amount, category or created_at"),
    order: str = Query("desc", description="asc or desc"),
) -> schemas.TransactionFilter:
    return schemas.parse_or_raise(
        schemas.TransactionFilter,
        start_date=start_date,
        end_date=end_date,
        category_ids=category_ids,
        type=type,
        min_amount=min_amount,
        max_amount=max_amount,
        search=search,
        sort_by=sort_by,
        order=order,
    )


def _read_files(files: Optional[List[UploadFile]]) -> List[FilePayload]:
    return [
        FilePayload(content=f.file.read(), filename=f.filename or "", content_type=f.content_type or "")
        for f in (files or [])
    ]


@router.get("", response_model=schemas.TransactionPage)
def list_transactions(
    filters: schemas.TransactionFilter = Depends(get_transaction_filter),
    limit: int = Query(settings.default_page_size, ge=0, le=settings.max_page_size),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    base_url: str = Depends(get_base_url),
    query_service: TransactionQueryService = Depends(get_query_service),
):
    """Filtered, sorted, paginated transactions with their attachments"""
    return query_service.list(current_user.id, filters, limit, offset, base_url)


@router.post("", response_model=schemas.MutationResult, status_code=status.HTTP_201_CREATED)
def create_transaction(
    category_id: str = Form(...),
    amount: Decimal = Form(...),
    transaction_date: date = Form(...),
    note: Optional[str] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    mutation_service: TransactionMutationService = Depends(get_mutation_service),
):
    """Create a transaction, optionally with attachments"""
    data = schemas.parse_or_raise(
        schemas.TransactionCreate,
        category_id=category_id,
        amount=amount,
        transaction_date=transaction_date,
        note=note,
    )
    return mutation_service.add(current_user.id, data, _read_files(files))


@router.patch("/{transaction_id}", response_model=schemas.MutationResult)
def update_transaction(
    transaction_id: str,
    category_id: Optional[str] = Form(None),
    amount: Optional[Decimal] = Form(None),
    transaction_date: Optional[date] = Form(None),
    note: Optional[str] = Form(None),
    delete_attachment_ids: Optional[List[str]] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    mutation_service: TransactionMutationService = Depends(get_mutation_service),
):
    """Partially update a transaction and add/remove attachments"""
    provided = {
        name: value for name, value in {
            "category_id": category_id,
            "amount": amount,
            "transaction_date": transaction_date,
            "note": note,
        }.items() if value is not None
    }
    patch = schemas.parse_or_raise(schemas.TransactionPatch, **provided)
    return mutation_service.update(
        current_user.id, transaction_id, patch, delete_attachment_ids or [], _read_files(files)
    )


@router.delete("/{transaction_id}", response_model=schemas.MutationResult)
def delete_transaction(
    transaction_id: str,
    current_user: User = Depends(get_current_user),
    mutation_service: TransactionMutationService = Depends(get_mutation_service),
):
    """Delete a transaction together with its attachment files"""
    return mutation_service.delete(current_user.id, transaction_id)
