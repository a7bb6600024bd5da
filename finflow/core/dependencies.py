"""
Dependency injection configuration
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from finflow.config import settings
from finflow.database import get_db
from finflow.services.attachment_store import AttachmentStore
from finflow.services.transaction_mutation_service import TransactionMutationService
from finflow.services.transaction_query_service import TransactionQueryService


def get_base_url(request: Request) -> str:
    """Public base URL used to build attachment links"""
    return (settings.public_base_url or str(request.base_url)).rstrip("/")


def get_attachment_store(db: Session = Depends(get_db)) -> AttachmentStore:
    return AttachmentStore(db)


def get_query_service(db: Session = Depends(get_db)) -> TransactionQueryService:
    return TransactionQueryService(db)


def get_mutation_service(
    db: Session = Depends(get_db),
    store: AttachmentStore = Depends(get_attachment_store),
    base_url: str = Depends(get_base_url),
) -> TransactionMutationService:
    return TransactionMutationService(db, store, base_url)
