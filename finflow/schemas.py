from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from typing import List, Optional, Type, TypeVar
from datetime import date
from decimal import Decimal
from enum import Enum

from finflow.config import settings
from finflow.core.exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_or_raise(model: Type[ModelT], **data) -> ModelT:
    """Build a schema, converting pydantic errors into the application ValidationError."""
    try:
        return model(**data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]) or model.__name__, "message": err["msg"]}
            for err in e.errors()
        ]
        first = errors[0] if errors else {"field": model.__name__, "message": "invalid"}
        raise ValidationError(
            f"Validation failed for {first['field']}: {first['message']}",
            {"errors": errors}
        )


def _clean_note(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if len(v) > 500:
        raise ValueError('Note too long (max 500 characters)')
    return v or None


# ============================================================================
# Enumerations
# ============================================================================

class CategoryType(str, Enum):
    INCOME = "Income"
    EXPENSE = "Expense"


class SortField(str, Enum):
    DATE = "date"
    AMOUNT = "amount"
    CATEGORY = "category"
    CREATED_AT = "created_at"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


# ============================================================================
# Filter Request
# ============================================================================

class TransactionFilter(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_ids: Optional[List[str]] = None
    type: Optional[CategoryType] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    search: Optional[str] = None
    sort_by: SortField = SortField.DATE
    order: SortOrder = SortOrder.DESC

    @field_validator('search')
    @classmethod
    def validate_search(cls, v):
        if v is None:
            return v
        v = v.strip()
        if len(v) > settings.search_max_length:
            raise ValueError(f'Search too long (max {settings.search_max_length} characters)')
        return v or None

    @field_validator('order', mode='before')
    @classmethod
    def normalize_order(cls, v):
        return v.lower() if isinstance(v, str) else v

    @model_validator(mode='after')
    def validate_ranges(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError('start_date must be on or before end_date')
        if (self.min_amount is not None and self.max_amount is not None
                and self.min_amount > self.max_amount):
            raise ValueError('min_amount must be less than or equal to max_amount')
        return self


# ============================================================================
# Mutation Requests
# ============================================================================

class TransactionCreate(BaseModel):
    category_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, le=Decimal("1000000"), max_digits=12, decimal_places=2)
    note: Optional[str] = None
    transaction_date: date

    @field_validator('note')
    @classmethod
    def validate_note(cls, v):
        return _clean_note(v)


class TransactionPatch(BaseModel):
    """Sparse update: only fields explicitly provided are written."""
    category_id: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[Decimal] = Field(default=None, gt=0, le=Decimal("1000000"), max_digits=12, decimal_places=2)
    note: Optional[str] = None
    transaction_date: Optional[date] = None

    @field_validator('note')
    @classmethod
    def validate_note(cls, v):
        return _clean_note(v)

    @model_validator(mode='after')
    def validate_required_columns(self):
        for name in ('category_id', 'amount', 'transaction_date'):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f'{name} cannot be cleared')
        return self

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


# ============================================================================
# Responses
# ============================================================================

class AttachmentResponse(BaseModel):
    id: str
    file_name: str
    file_path: str
    file_type: str
    file_size: int
    url: str


class TransactionResponse(BaseModel):
    id: str
    amount: Decimal
    note: Optional[str] = None
    transaction_date: date
    category_id: str
    category_name: str
    category_type: str
    attachments: List[AttachmentResponse] = []
    model_config = ConfigDict(from_attributes=True)


class TransactionPage(BaseModel):
    items: List[TransactionResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class CleanupFailure(BaseModel):
    attachment_id: Optional[str] = None
    file_path: str
    error: str


class MutationResult(BaseModel):
    transaction_id: str
    attachments_added: List[AttachmentResponse] = []
    duplicates_skipped: int = 0
    attachments_removed: List[str] = []
    cleanup_failures: List[CleanupFailure] = []
