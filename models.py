from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    # naive UTC, the way every timestamp column below is stored
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LendingStatus:
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"

    ALL = (BORROWED, RETURNED, OVERDUE)
    OPEN = (BORROWED, OVERDUE)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    hashed_password = Column(String, nullable=True)  # unset until an invitation is accepted
    role = Column(String, nullable=False, default="User")
    permissions = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True)
    invitation_token = Column(String, nullable=True, index=True)
    invitation_expires = Column(DateTime, nullable=True)
    reset_token = Column(String, nullable=True, index=True)
    reset_token_expires = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("available_copies >= 0", name="ck_books_available_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # accession_number is the library's own book id (business key)
    accession_number = Column(String, unique=True, index=True, nullable=False)
    title = Column(String, nullable=False, index=True)
    author = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False)  # Textbook / Statute / Law Report / Case Law / Journal / Reference
    isbn = Column(String, nullable=True, index=True)
    shelf_location = Column(String, nullable=True)
    keywords = Column(JSON, nullable=False, default=list)
    cover_image = Column(String, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Borrower(Base):
    __tablename__ = "borrowers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False)  # Intern, Lawyer, Staff, Partner, Associate, ...
    phone = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)
    member_id = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Lending(Base):
    __tablename__ = "lendings"

    # Plain id columns, no FOREIGN KEY: a book or borrower whose lendings are all
    # returned can be deleted and its history stays. The deletion guards in
    # crud.py only block while a lending is open.
    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, index=True, nullable=False)
    borrower_id = Column(Integer, index=True, nullable=False)
    borrow_date = Column(DateTime, nullable=False, default=utcnow)
    due_date = Column(DateTime, nullable=False, index=True)
    return_date = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default=LendingStatus.BORROWED, index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    book = relationship("Book", primaryjoin="foreign(Lending.book_id) == Book.id", lazy="joined")
    borrower = relationship("Borrower", primaryjoin="foreign(Lending.borrower_id) == Borrower.id", lazy="joined")


class Case(Base):
    __tablename__ = "cases"

    id = Column(Integer, primary_key=True, index=True)
    case_id = Column(String, unique=True, index=True, nullable=False)
    title = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="Open")
    client_name = Column(String, nullable=False, index=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    assigned_user = relationship("User", lazy="joined")


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    case_id = Column(Integer, ForeignKey("cases.id"), index=True, nullable=False)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    type = Column(String, nullable=False)
    file_url = Column(String, nullable=True)
    blob_public_id = Column(String, nullable=True)
    signature = Column(Text, nullable=True)
    signed_by = Column(String, nullable=True)
    signed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, index=True)
    case_id = Column(Integer, ForeignKey("cases.id"), index=True, nullable=False)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=False)
    due_date = Column(DateTime, nullable=False, index=True)
    message = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending / sent / failed
    sent_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class EmailLog(Base):
    __tablename__ = "email_logs"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, index=True, nullable=False)
    case_id = Column(Integer, index=True, nullable=True)
    recipient_email = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    sent_by = Column(Integer, nullable=True)
    sent_at = Column(DateTime, default=utcnow)
