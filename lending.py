"""Lending engine: borrow, return, derived overdue state and the notification batches.

Inventory invariant: `0 <= available_copies <= total_copies` for every book.
Only `borrow_book` (-1) and `return_book` (+1) move `available_copies` on a
lending, and both do it with a conditional UPDATE inside the same transaction as the
lending change, so concurrent requests cannot oversell the last copy.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import config
import notifier as templates
from errors import AlreadyReturned, InvalidInput, NoCopiesAvailable, NotFound
from models import Book, Borrower, Lending, LendingStatus, utcnow
from schemas import LendingCreate

logger = logging.getLogger(__name__)


def effective_status(status: str, due_date: datetime, now: datetime) -> str:
    """Status as reported to clients: a `borrowed` lending past its due date reads as `overdue`."""
    if status == LendingStatus.BORROWED and due_date < now:
        return LendingStatus.OVERDUE
    return status


def overdue_condition(now: datetime):
    return or_(
        Lending.status == LendingStatus.OVERDUE,
        and_(Lending.status == LendingStatus.BORROWED, Lending.due_date < now),
    )


def status_condition(status: str, now: datetime):
    if status == LendingStatus.OVERDUE:
        return overdue_condition(now)
    if status == LendingStatus.BORROWED:
        return and_(Lending.status == LendingStatus.BORROWED, Lending.due_date >= now)
    if status == LendingStatus.RETURNED:
        return Lending.status == LendingStatus.RETURNED
    raise InvalidInput(f"Unknown lending status: {status}")


def count_open_lendings(db: Session, book_id: Optional[int] = None, borrower_id: Optional[int] = None) -> int:
    """Lendings not yet returned (`borrowed` or persisted `overdue`) for a book and/or borrower."""
    query = db.query(Lending).filter(Lending.status.in_(LendingStatus.OPEN))
    if book_id is not None:
        query = query.filter(Lending.book_id == book_id)
    if borrower_id is not None:
        query = query.filter(Lending.borrower_id == borrower_id)
    return query.count()


def borrow_book(data: LendingCreate, db: Session, now: Optional[datetime] = None) -> Lending:
    now = now or utcnow()

    book = db.get(Book, data.book_id)
    if book is None:
        raise NotFound("Book not found")
    borrower = db.get(Borrower, data.borrower_id)
    if borrower is None:
        raise NotFound("Borrower not found")
    if book.available_copies <= 0:
        raise NoCopiesAvailable()

    # The decrement is guarded in SQL: a concurrent borrow of the last copy
    # leaves rowcount 0 here even if our loaded `book` still shows a copy.
    try:
        result = db.execute(
            update(Book)
            .where(Book.id == book.id, Book.available_copies > 0)
            .values(available_copies=Book.available_copies - 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            logger.info("Borrow of book %s lost the race for its last copy", book.id)
            raise NoCopiesAvailable()

        lending = Lending(
            book_id=book.id,
            borrower_id=borrower.id,
            borrow_date=now,
            due_date=data.due_date,
            status=LendingStatus.BORROWED,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        db.add(lending)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(lending)
    logger.info("Lending %s: book %s borrowed by borrower %s, due %s", lending.id, book.id, borrower.id, data.due_date)
    return lending


def return_book(lending_id: int, db: Session, now: Optional[datetime] = None) -> Lending:
    now = now or utcnow()

    lending = db.get(Lending, lending_id)
    if lending is None:
        raise NotFound("Lending record not found")
    if lending.status == LendingStatus.RETURNED:
        raise AlreadyReturned()

    try:
        result = db.execute(
            update(Lending)
            .where(Lending.id == lending_id, Lending.status != LendingStatus.RETURNED)
            .values(status=LendingStatus.RETURNED, return_date=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # returned by a concurrent request since we loaded it
            db.rollback()
            raise AlreadyReturned()

        restored = db.execute(
            update(Book)
            .where(Book.id == lending.book_id, Book.available_copies < Book.total_copies)
            .values(available_copies=Book.available_copies + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if restored.rowcount != 1:
            logger.warning("Return of lending %s did not restore a copy: book %s is missing or already at full stock",
                           lending_id, lending.book_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(lending)
    logger.info("Lending %s returned (book %s)", lending.id, lending.book_id)
    return lending


def lending_to_dict(lending: Lending, now: datetime) -> Dict[str, Any]:
    book = lending.book
    borrower = lending.borrower
    return {
        "id": lending.id,
        "book_id": lending.book_id,
        "borrower_id": lending.borrower_id,
        "borrow_date": lending.borrow_date,
        "due_date": lending.due_date,
        "return_date": lending.return_date,
        "status": effective_status(lending.status, lending.due_date, now),
        "notes": lending.notes,
        "book_title": book.title if book else None,
        "book_author": book.author if book else None,
        "borrower_name": borrower.name if borrower else None,
        "borrower_role": borrower.role if borrower else None,
    }


def list_lendings(db: Session, skip: int = 0, limit: int = 100, status: Optional[str] = None,
                  now: Optional[datetime] = None) -> Tuple[List[Dict[str, Any]], int]:
    """Newest first, with book and borrower details joined and the effective status reported."""
    now = now or utcnow()
    query = db.query(Lending)
    if status:
        query = query.filter(status_condition(status, now))
    total = query.count()
    rows = query.order_by(Lending.borrow_date.desc(), Lending.id.desc()).offset(skip).limit(limit).all()
    return [lending_to_dict(l, now) for l in rows], total


def notify_overdue(db: Session, notifier, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Email every borrower holding an effectively overdue book.

    Each lending is handled on its own: a failed send is logged and counted,
    and the batch moves on. A successful send persists `overdue` on the lending.
    """
    now = now or utcnow()
    lendings = db.query(Lending).filter(overdue_condition(now)).order_by(Lending.due_date).all()
    total = len(lendings)
    logger.info("Found %d overdue lendings as of %s", total, now)
    if total == 0:
        return {"message": "No overdue books found", "notified_count": 0, "total_overdue": 0, "failed_count": 0}

    notified = failed = 0
    for lending in lendings:
        borrower, book = lending.borrower, lending.book
        if borrower is None or book is None:
            logger.warning("Lending %s references a missing book or borrower, skipped", lending.id)
            continue
        if not borrower.email:
            logger.info("No email for borrower %s, lending %s skipped", borrower.name, lending.id)
            continue

        days_overdue = max(1, math.ceil((now - lending.due_date).total_seconds() / 86400))
        subject, html = templates.overdue_email(borrower.name, book.title, book.author, lending.due_date, days_overdue)
        if not notifier.send(borrower.email, subject, html):
            failed += 1
            continue

        notified += 1
        if lending.status != LendingStatus.OVERDUE:
            try:
                lending.status = LendingStatus.OVERDUE
                lending.updated_at = now
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Could not mark lending %s overdue", lending.id)

    logger.info("Overdue notifications: %d sent, %d failed, %d overdue", notified, failed, total)
    return {
        "message": "Overdue notifications sent successfully",
        "notified_count": notified,
        "total_overdue": total,
        "failed_count": failed,
    }


def notify_due_soon(db: Session, notifier, now: Optional[datetime] = None,
                    days: Optional[int] = None) -> Dict[str, Any]:
    """Email borrowers whose `borrowed` books fall due within the next `days` days. Status is untouched."""
    now = now or utcnow()
    days = config.DUE_SOON_DAYS if days is None else days
    horizon = now + timedelta(days=days)
    lendings = (
        db.query(Lending)
        .filter(Lending.status == LendingStatus.BORROWED, Lending.due_date >= now, Lending.due_date <= horizon)
        .order_by(Lending.due_date)
        .all()
    )
    total = len(lendings)
    if total == 0:
        return {"message": "No books due soon", "notified_count": 0, "total_due_soon": 0, "failed_count": 0}

    notified = failed = 0
    for lending in lendings:
        borrower, book = lending.borrower, lending.book
        if borrower is None or book is None or not borrower.email:
            continue
        days_until_due = max(0, math.ceil((lending.due_date - now).total_seconds() / 86400))
        subject, html = templates.due_soon_email(borrower.name, book.title, book.author, lending.due_date, days_until_due)
        if notifier.send(borrower.email, subject, html):
            notified += 1
        else:
            failed += 1

    logger.info("Due-soon notifications: %d sent, %d failed, %d due", notified, failed, total)
    return {
        "message": "Due soon notifications sent successfully",
        "notified_count": notified,
        "total_due_soon": total,
        "failed_count": failed,
    }
