from sqlalchemy import Column, String, Numeric, Date, DateTime, Boolean, ForeignKey, func, UniqueConstraint, Index, Integer
from sqlalchemy.orm import relationship
import uuid

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=func.now())


class Category(Base):
    __tablename__ = "categories"
    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)  # 'Income', 'Expense'
    user_id = Column(String, ForeignKey("users.id"), nullable=True)  # NULL = global category
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index('ix_categories_user_type', 'user_id', 'type'),
    )


class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    category_id = Column(String, ForeignKey("categories.id"), nullable=False)
    amount = Column(Numeric(12, 2, asdecimal=True), nullable=False)
    note = Column(String(500), nullable=True)
    transaction_date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=func.now())

    category = relationship("Category")
    attachments = relationship(
        "Attachment",
        back_populates="transaction",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Attachment.created_at",
    )

    __table_args__ = (
        Index('ix_transactions_user_date', 'user_id', 'transaction_date'),
    )


class Attachment(Base):
    __tablename__ = "transaction_attachments"
    id = Column(String, primary_key=True, default=_uuid)
    transaction_id = Column(String, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)  # relative to settings.media_root
    file_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    content_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=func.now())

    transaction = relationship("Transaction", back_populates="attachments")

    __table_args__ = (
        UniqueConstraint('transaction_id', 'content_hash', name='uq_attachment_transaction_hash'),
    )


class RecurringTransaction(Base):
    __tablename__ = "recurring_transactions"
    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    category_id = Column(String, ForeignKey("categories.id"), nullable=False)
    amount = Column(Numeric(12, 2, asdecimal=True), nullable=False)
    note = Column(String(500), nullable=True)
    frequency = Column(String, nullable=False)  # 'DAILY', 'WEEKLY', 'MONTHLY', 'YEARLY'
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    last_run_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
