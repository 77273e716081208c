from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # stored timestamps are naive UTC; offset-aware input is converted first
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


BookCategory = Literal["Textbook", "Statute", "Law Report", "Case Law", "Journal", "Reference"]
CaseStatus = Literal["Open", "Closed", "Pending", "Archived"]
LendingStatusFilter = Literal["borrowed", "returned", "overdue"]


# --- Books ---
class BookCreate(BaseModel):
    accession_number: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=200)
    author: str = Field(..., min_length=1, max_length=200)
    category: BookCategory
    isbn: Optional[str] = Field(None, max_length=50)
    shelf_location: Optional[str] = Field(None, max_length=100)
    keywords: List[str] = Field(default_factory=list)
    cover_image: Optional[str] = None
    total_copies: int = Field(1, ge=1)


class BookUpdate(BaseModel):
    accession_number: Optional[str] = Field(None, min_length=1, max_length=100)
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    author: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[BookCategory] = None
    isbn: Optional[str] = Field(None, max_length=50)
    shelf_location: Optional[str] = Field(None, max_length=100)
    keywords: Optional[List[str]] = None
    cover_image: Optional[str] = None
    total_copies: Optional[int] = Field(None, ge=0)
    available_copies: Optional[int] = Field(None, ge=0)


class BookOut(BaseModel):
    id: int
    accession_number: str
    title: str
    author: str
    category: str
    isbn: Optional[str] = None
    shelf_location: Optional[str] = None
    keywords: List[str] = []
    cover_image: Optional[str] = None
    total_copies: int
    available_copies: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class BookList(BaseModel):
    books: List[BookOut]
    total: int


# --- Borrowers ---
class BorrowerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    role: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    member_id: str = Field(..., min_length=1, max_length=100)


class BorrowerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    role: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    member_id: Optional[str] = Field(None, min_length=1, max_length=100)


class BorrowerOut(BaseModel):
    id: int
    name: str
    role: str
    phone: str
    email: Optional[str] = None
    member_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class BorrowerList(BaseModel):
    borrowers: List[BorrowerOut]
    total: int


class BorrowerSummary(BaseModel):
    id: int
    name: str
    member_id: str
    role: str
    model_config = ConfigDict(from_attributes=True)


# --- Lendings ---
class LendingCreate(BaseModel):
    book_id: int
    borrower_id: int
    due_date: datetime
    notes: Optional[str] = None

    normalise_due_date = field_validator("due_date")(_naive_utc)


class LendingReturn(BaseModel):
    lending_id: int


class LendingOut(BaseModel):
    id: int
    book_id: int
    borrower_id: int
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: str
    notes: Optional[str] = None
    book_title: Optional[str] = None
    book_author: Optional[str] = None
    borrower_name: Optional[str] = None
    borrower_role: Optional[str] = None


class LendingList(BaseModel):
    lendings: List[LendingOut]
    total: int


class OverdueNotificationResult(BaseModel):
    message: str
    notified_count: int
    total_overdue: int
    failed_count: int


class DueSoonNotificationResult(BaseModel):
    message: str
    notified_count: int
    total_due_soon: int
    failed_count: int


# --- Cases ---
class CaseCreate(BaseModel):
    case_id: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: CaseStatus = "Open"
    client_name: str = Field(..., min_length=1, max_length=200)
    assigned_to: Optional[int] = None


class CaseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[CaseStatus] = None
    client_name: Optional[str] = Field(None, min_length=1, max_length=200)
    assigned_to: Optional[int] = None


class CaseOut(BaseModel):
    id: int
    case_id: str
    title: str
    description: Optional[str] = None
    status: str
    client_name: str
    assigned_to: Optional[int] = None
    assigned_user_name: Optional[str] = None
    assigned_user_role: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CaseList(BaseModel):
    cases: List[CaseOut]
    total: int


class ReminderCreate(BaseModel):
    case_id: int
    due_date: datetime
    message: str = Field(..., min_length=1)
    assigned_to: int

    normalise_due_date = field_validator("due_date")(_naive_utc)


class ReminderOut(BaseModel):
    id: int
    case_id: int
    assigned_to: int
    due_date: datetime
    message: str
    status: str
    sent_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


# --- Documents ---
class DocumentOut(BaseModel):
    id: int
    case_id: int
    title: str
    content: str
    type: str
    file_url: Optional[str] = None
    signature: Optional[str] = None
    signed_by: Optional[str] = None
    signed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class DocumentSign(BaseModel):
    signature: str = Field(..., min_length=1)
    signed_by: str = Field(..., min_length=1, max_length=200)


class DocumentEmail(BaseModel):
    document_id: int
    recipient_email: EmailStr
    subject: Optional[str] = None
    message: Optional[str] = None


# --- Dashboard ---
class MostBorrowedItem(BaseModel):
    book_id: int
    title: str
    author: str
    count: int


class DashboardStats(BaseModel):
    total_books: int
    available_books: int
    total_borrowers: int
    active_lendings: int
    overdue_books: int
    most_borrowed_books: List[MostBorrowedItem]
