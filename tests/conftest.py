import pytest
from datetime import date
from decimal import Decimal
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi import FastAPI
from fastapi.testclient import TestClient

from finflow.auth import create_access_token
from finflow.config import settings
from finflow.core.error_handler import register_exception_handlers
from finflow.database import Base, get_db
from finflow.models import User, Category, Transaction
from finflow.routers import transactions
from finflow.services.attachment_store import AttachmentStore, FilePayload
from finflow.services.transaction_mutation_service import TransactionMutationService
from finflow.services.transaction_query_service import TransactionQueryService

BASE_URL = "http://testserver"

# In-memory database shared across the single pooled connection
engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db_session")
def db_session_fixture():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="media_root")
def media_root_fixture(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "media_root", str(tmp_path))
    return tmp_path


@pytest.fixture
def store(db_session, media_root):
    return AttachmentStore(db_session, media_root)


@pytest.fixture
def mutations(db_session, store):
    return TransactionMutationService(db_session, store, BASE_URL)


@pytest.fixture
def queries(db_session):
    return TransactionQueryService(db_session)


def _make_user(db, name):
    user = User(name=name, email=f"{name}@example.com")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def user(db_session):
    return _make_user(db_session, "alice")


@pytest.fixture
def other_user(db_session):
    return _make_user(db_session, "bob")


def _make_category(db, name, type, user_id=None, is_active=True):
    category = Category(name=name, type=type, user_id=user_id, is_active=is_active)
    db.add(category)
    db.commit()
    return category


@pytest.fixture
def expense_category(db_session):
    return _make_category(db_session, "Groceries", "Expense")


@pytest.fixture
def income_category(db_session):
    return _make_category(db_session, "Salary", "Income")


@pytest.fixture
def private_category(db_session, other_user):
    return _make_category(db_session, "Bob's Hobby", "Expense", user_id=other_user.id)


@pytest.fixture
def make_transaction(db_session):
    def _make(user, category, amount, on=date(2024, 5, 1), note=None):
        txn = Transaction(
            user_id=user.id,
            category_id=category.id,
            amount=Decimal(str(amount)),
            note=note,
            transaction_date=on,
        )
        db_session.add(txn)
        db_session.commit()
        return txn
    return _make


def png(content: bytes = b"\x89PNG receipt", name: str = "receipt.png") -> FilePayload:
    return FilePayload(content=content, filename=name, content_type="image/png")


def stored_files(media_root: Path):
    folder = Path(media_root) / settings.upload_subdir
    if not folder.exists():
        return []
    return sorted(p for p in folder.iterdir() if p.is_file())


@pytest.fixture(name="client")
def client_fixture(db_session, media_root):
    app = FastAPI(title=settings.app_name, version=settings.version)
    register_exception_handlers(app)
    app.include_router(transactions.router, prefix="/api")

    def override_get_db():
        yield db_session
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}
    return _headers
