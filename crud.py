import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import auth_utils
from errors import Conflict, InvalidInput, NotFound
from lending import count_open_lendings, overdue_condition
from models import Book, Borrower, Case, Document, Lending, LendingStatus, Reminder, User, utcnow
from permissions import unknown_permissions
from schemas import BookCreate, BookUpdate, BorrowerCreate, BorrowerUpdate, CaseCreate, CaseUpdate

logger = logging.getLogger(__name__)


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def _commit(db: Session, conflict_message: str) -> None:
    # unique constraints back up the explicit duplicate checks under concurrency
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.info("Integrity error: %s", e.orig if getattr(e, 'orig', None) else e)
        raise Conflict(conflict_message)


# --- Book CRUD ---
def add_book(book_data: BookCreate, db: Session) -> Book:
    exists = db.query(Book).filter(Book.accession_number == book_data.accession_number).first()
    if exists:
        raise Conflict("A book with this accession number already exists")

    new_book = Book(
        accession_number=book_data.accession_number,
        title=book_data.title,
        author=book_data.author,
        category=book_data.category,
        isbn=book_data.isbn,
        shelf_location=book_data.shelf_location,
        keywords=book_data.keywords,
        cover_image=book_data.cover_image,
        total_copies=book_data.total_copies,
        available_copies=book_data.total_copies,
    )
    db.add(new_book)
    _commit(db, "A book with this accession number already exists")
    db.refresh(new_book)
    logger.info("Book %s created (%s)", new_book.id, new_book.accession_number)
    return new_book


def get_book_by_id(book_id: int, db: Session) -> Book:
    book = db.query(Book).filter(Book.id == book_id).first()
    if not book:
        raise NotFound("Book not found")
    return book


def get_books(db: Session, skip: int = 0, limit: int = 100, search: Optional[str] = None,
              available_only: bool = False) -> Tuple[List[Book], int]:
    query = db.query(Book)
    if search:
        like = f"%{search}%"
        query = query.filter(
            (Book.title.ilike(like))
            | (Book.author.ilike(like))
            | (Book.isbn.ilike(like))
            | (Book.accession_number.ilike(like))
        )
    if available_only:
        query = query.filter(Book.available_copies > 0)
    total = query.count()
    books = query.order_by(Book.title).offset(skip).limit(limit).all()
    return books, total


_BOOK_REQUIRED = {"accession_number", "title", "author", "category", "keywords", "total_copies", "available_copies"}


def update_book(book_id: int, book_data: BookUpdate, db: Session) -> Book:
    """Apply a partial edit.

    Changing `total_copies` without an explicit `available_copies` shifts
    `available_copies` by the same amount, keeping the number on loan fixed.
    The result must still satisfy `0 <= available_copies <= total_copies`.
    """
    book = get_book_by_id(book_id, db)
    changes = {k: v for k, v in book_data.model_dump(exclude_unset=True).items()
               if v is not None or k not in _BOOK_REQUIRED}

    new_accession = changes.get("accession_number")
    if new_accession and new_accession != book.accession_number:
        exists = db.query(Book).filter(Book.accession_number == new_accession, Book.id != book_id).first()
        if exists:
            raise Conflict("A book with this accession number already exists")

    stock = {k: changes.pop(k) for k in ("total_copies", "available_copies") if k in changes}
    if stock:
        _update_stock(book, stock, db)

    for key, value in changes.items():
        setattr(book, key, value)
    _commit(db, "A book with this accession number already exists")
    db.refresh(book)
    return book


def _stock_error(total: int, available: int) -> InvalidInput:
    return InvalidInput(
        f"available_copies must be between 0 and total_copies ({total}); got {available}",
        total_copies=total,
        available_copies=available,
    )


def _update_stock(book: Book, stock: Dict[str, int], db: Session) -> None:
    """Write copy counts with one guarded UPDATE against the current row.

    Borrows and returns committed after `book` was loaded are kept: the shift
    is computed in SQL, and an explicit `available_copies` only applies if the
    row still holds the count the caller loaded.
    """
    new_total = stock.get("total_copies", book.total_copies)
    stmt = update(Book).where(Book.id == book.id)
    if "available_copies" in stock:
        new_available = stock["available_copies"]
        if not 0 <= new_available <= new_total:
            raise _stock_error(new_total, new_available)
        stmt = stmt.where(Book.available_copies == book.available_copies).values(
            total_copies=new_total, available_copies=new_available)
    else:
        shifted = Book.available_copies + (new_total - Book.total_copies)
        stmt = stmt.where(shifted >= 0, shifted <= new_total).values(
            total_copies=new_total, available_copies=shifted)

    result = db.execute(stmt.execution_options(synchronize_session=False))
    if result.rowcount:
        return

    db.rollback()
    current = db.get(Book, book.id)
    if current is None:
        raise NotFound("Book not found")
    if "available_copies" in stock:
        raise Conflict("Book stock changed while editing; reload and retry",
                       available_copies=current.available_copies)
    raise _stock_error(new_total, current.available_copies + (new_total - current.total_copies))


def delete_book(book_id: int, db: Session) -> None:
    book = get_book_by_id(book_id, db)
    open_count = count_open_lendings(db, book_id=book_id)
    if open_count:
        raise Conflict("Cannot delete book with active lendings", active_lendings=open_count)
    db.delete(book)
    db.commit()
    logger.info("Book %s deleted", book_id)


# --- Borrower CRUD ---
def add_borrower(borrower_data: BorrowerCreate, db: Session) -> Borrower:
    exists = db.query(Borrower).filter(Borrower.member_id == borrower_data.member_id).first()
    if exists:
        raise Conflict("A borrower with this member ID already exists")
    new_borrower = Borrower(**borrower_data.model_dump())
    db.add(new_borrower)
    _commit(db, "A borrower with this member ID already exists")
    db.refresh(new_borrower)
    return new_borrower


def get_borrower_by_id(borrower_id: int, db: Session) -> Borrower:
    borrower = db.query(Borrower).filter(Borrower.id == borrower_id).first()
    if not borrower:
        raise NotFound("Borrower not found")
    return borrower


def get_borrowers(db: Session, skip: int = 0, limit: int = 100,
                  search: Optional[str] = None) -> Tuple[List[Borrower], int]:
    query = db.query(Borrower)
    if search:
        like = f"%{search}%"
        query = query.filter(
            (Borrower.name.ilike(like))
            | (Borrower.email.ilike(like))
            | (Borrower.member_id.ilike(like))
        )
    total = query.count()
    return query.order_by(Borrower.name).offset(skip).limit(limit).all(), total


def list_borrower_summaries(db: Session) -> List[Borrower]:
    return db.query(Borrower).order_by(Borrower.name).all()


def update_borrower(borrower_id: int, borrower_data: BorrowerUpdate, db: Session) -> Borrower:
    borrower = get_borrower_by_id(borrower_id, db)
    data = borrower_data.model_dump(exclude_unset=True)
    new_member_id = data.get("member_id")
    if new_member_id and new_member_id != borrower.member_id:
        exists = db.query(Borrower).filter(Borrower.member_id == new_member_id, Borrower.id != borrower_id).first()
        if exists:
            raise Conflict("A borrower with this member ID already exists")
    for key, value in data.items():
        if value is not None or key == "email":
            setattr(borrower, key, value)
    _commit(db, "A borrower with this member ID already exists")
    db.refresh(borrower)
    return borrower


def delete_borrower(borrower_id: int, db: Session) -> None:
    borrower = get_borrower_by_id(borrower_id, db)
    open_count = count_open_lendings(db, borrower_id=borrower_id)
    if open_count:
        raise Conflict("Cannot delete borrower with active lendings", active_lendings=open_count)
    db.delete(borrower)
    db.commit()
    logger.info("Borrower %s deleted", borrower_id)


# --- User CRUD ---
def validate_permissions(permissions: List[str]) -> List[str]:
    unknown = unknown_permissions(permissions)
    if unknown:
        raise InvalidInput("Unknown permissions: " + ", ".join(unknown), unknown=unknown)
    return sorted(set(permissions))


def get_user_by_id(user_id: int, db: Session) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")
    return user


def get_user_by_email(email: str, db: Session) -> Optional[User]:
    return db.query(User).filter(func.lower(User.email) == email.lower()).first()


def add_user(email: str, db: Session, name: Optional[str] = None, password: Optional[str] = None,
             role: str = "User", permissions: Optional[List[str]] = None, is_active: bool = True,
             **extra: Any) -> User:
    if get_user_by_email(email, db):
        raise Conflict("Email already registered")
    user = User(
        email=email.lower(),
        name=name,
        hashed_password=auth_utils.get_password_hash(password) if password else None,
        role=role,
        permissions=validate_permissions(permissions or []),
        is_active=is_active,
        **extra,
    )
    db.add(user)
    _commit(db, "Email already registered")
    db.refresh(user)
    logger.info("User %s created with role %s", user.email, user.role)
    return user


def get_users(db: Session, skip: int = 0, limit: int = 100, search: Optional[str] = None) -> Tuple[List[User], int]:
    query = db.query(User)
    if search:
        like = f"%{search}%"
        query = query.filter((User.name.ilike(like)) | (User.email.ilike(like)))
    total = query.count()
    return query.order_by(User.created_at.desc(), User.id.desc()).offset(skip).limit(limit).all(), total


# --- Case CRUD ---
def case_to_dict(case: Case) -> Dict[str, Any]:
    user = case.assigned_user
    return {
        "id": case.id,
        "case_id": case.case_id,
        "title": case.title,
        "description": case.description,
        "status": case.status,
        "client_name": case.client_name,
        "assigned_to": case.assigned_to,
        "assigned_user_name": user.name if user else None,
        "assigned_user_role": user.role if user else None,
        "created_at": case.created_at,
        "updated_at": case.updated_at,
    }


def _check_assignee(user_id: Optional[int], db: Session) -> None:
    if user_id is not None and not db.query(User).filter(User.id == user_id).first():
        raise InvalidInput("Assigned user not found")


def add_case(case_data: CaseCreate, db: Session) -> Case:
    exists = db.query(Case).filter(Case.case_id == case_data.case_id).first()
    if exists:
        raise Conflict("Case ID already exists")
    _check_assignee(case_data.assigned_to, db)
    new_case = Case(**case_data.model_dump())
    db.add(new_case)
    _commit(db, "Case ID already exists")
    db.refresh(new_case)
    return new_case


def get_case_by_id(case_pk: int, db: Session) -> Case:
    case = db.query(Case).filter(Case.id == case_pk).first()
    if not case:
        raise NotFound("Case not found")
    return case


def get_cases(db: Session, skip: int = 0, limit: int = 100, search: Optional[str] = None,
              status: Optional[str] = None) -> Tuple[List[Case], int]:
    query = db.query(Case)
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Case.title.ilike(like), Case.case_id.ilike(like), Case.client_name.ilike(like)))
    if status:
        query = query.filter(Case.status == status)
    total = query.count()
    return query.order_by(Case.created_at.desc(), Case.id.desc()).offset(skip).limit(limit).all(), total


def update_case(case_pk: int, case_data: CaseUpdate, db: Session) -> Case:
    case = get_case_by_id(case_pk, db)
    data = case_data.model_dump(exclude_unset=True)
    if "assigned_to" in data:
        _check_assignee(data["assigned_to"], db)
    for key, value in data.items():
        if value is not None or key in ("description", "assigned_to"):
            setattr(case, key, value)
    db.commit()
    db.refresh(case)
    return case


def delete_case(case_pk: int, db: Session) -> None:
    case = get_case_by_id(case_pk, db)
    documents = db.query(Document).filter(Document.case_id == case_pk).count()
    if documents:
        raise Conflict("Cannot delete case with existing documents", document_count=documents)
    business_id = case.case_id
    db.query(Reminder).filter(Reminder.case_id == case_pk).delete(synchronize_session=False)
    db.delete(case)
    db.commit()
    logger.info("Case %s deleted", business_id)


# --- Document CRUD ---
def get_document_by_id(document_id: int, db: Session) -> Document:
    document = db.query(Document).filter(Document.id == document_id).first()
    if not document:
        raise NotFound("Document not found")
    return document


def get_documents_for_case(case_pk: int, db: Session) -> List[Document]:
    get_case_by_id(case_pk, db)
    return db.query(Document).filter(Document.case_id == case_pk).order_by(Document.created_at.desc()).all()


# --- Dashboard ---
def dashboard_stats(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    most_borrowed = (
        db.query(Book.id, Book.title, Book.author, func.count(Lending.id).label("borrow_count"))
        .join(Lending, Lending.book_id == Book.id)
        .filter(Lending.status == LendingStatus.RETURNED)
        .group_by(Book.id, Book.title, Book.author)
        .order_by(func.count(Lending.id).desc(), Book.title)
        .limit(5)
        .all()
    )
    return {
        "total_books": db.query(Book).count(),
        "available_books": db.query(Book).filter(Book.available_copies > 0).count(),
        "total_borrowers": db.query(Borrower).count(),
        "active_lendings": db.query(Lending).filter(Lending.status.in_(LendingStatus.OPEN)).count(),
        "overdue_books": db.query(Lending).filter(overdue_condition(now)).count(),
        "most_borrowed_books": [
            {"book_id": r.id, "title": r.title, "author": r.author, "count": r.borrow_count} for r in most_borrowed
        ],
    }
