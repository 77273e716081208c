import logging
import os
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import auth_utils
import config
import crud
import lending
import models
from auth import router as auth_router
from cases import router as cases_router
from database import db, get_db
from documents import router as documents_router
from errors import register_error_handlers
from notifier import get_notifier
from permissions import (
    BOOKS_CREATE, BOOKS_DELETE, BOOKS_READ, BOOKS_UPDATE,
    BORROWERS_CREATE, BORROWERS_DELETE, BORROWERS_READ, BORROWERS_UPDATE,
    DASHBOARD_READ,
    LENDINGS_CREATE, LENDINGS_READ, LENDINGS_UPDATE,
    Role,
)
from schemas import (
    BookCreate, BookList, BookOut, BookUpdate,
    BorrowerCreate, BorrowerList, BorrowerOut, BorrowerSummary, BorrowerUpdate,
    DashboardStats,
    DueSoonNotificationResult, LendingCreate, LendingList, LendingOut, LendingReturn, LendingStatusFilter,
    OverdueNotificationResult,
)
from users import router as users_router

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title=config.APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Access-Token"],
    max_age=600
)


@app.middleware("http")
async def log_requests(request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


register_error_handlers(app)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(cases_router)
app.include_router(documents_router)

os.makedirs(config.UPLOAD_DIR, exist_ok=True)
app.mount(config.UPLOAD_BASE_URL, StaticFiles(directory=config.UPLOAD_DIR), name="uploads")


@app.on_event("startup")
def on_startup():
    db.create_all()
    if not (config.ADMIN_EMAIL and config.ADMIN_PASSWORD):
        return
    # Seed a Super Admin when credentials are provided
    session = db.session()
    try:
        if not crud.get_user_by_email(config.ADMIN_EMAIL, session):
            crud.add_user(config.ADMIN_EMAIL, session, name="Super Admin", password=config.ADMIN_PASSWORD,
                          role=Role.SUPER_ADMIN.value)
            logger.info("Created Super Admin user %s", config.ADMIN_EMAIL)
    finally:
        session.close()


@app.get("/health")
def health(session: Session = Depends(get_db)):
    """Basic health check endpoint. Returns DB connectivity and basic counts."""
    try:
        session.execute(text("SELECT 1"))
        return {
            "status": "ok",
            "database": "connected",
            "total_books": session.query(models.Book).count(),
            "total_borrowers": session.query(models.Borrower).count(),
        }
    except SQLAlchemyError as e:
        logger.error("Health check failed: %s", e)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            content={"status": "error", "database": "disconnected"})


# Books
@app.get("/books", response_model=BookList)
def list_books(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    search: Optional[str] = None,
    session: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(BOOKS_READ)),
):
    """
    Retrieve books with pagination.
    - **search**: case-insensitive match on title, author, ISBN or accession number
    """
    books, total = crud.get_books(session, skip=skip, limit=limit, search=search)
    return {"books": books, "total": total}


@app.get("/books/available", response_model=BookList)
def list_available_books(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    search: Optional[str] = None,
    session: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(BOOKS_READ)),
):
    books, total = crud.get_books(session, skip=skip, limit=limit, search=search, available_only=True)
    return {"books": books, "total": total}


@app.post("/books", response_model=BookOut, status_code=status.HTTP_201_CREATED)
def create_book(book: BookCreate, session: Session = Depends(get_db),
                _user: models.User = Depends(auth_utils.require_permission(BOOKS_CREATE))):
    return crud.add_book(book, session)


@app.get("/books/{book_id}", response_model=BookOut)
def retrieve_book(book_id: int, session: Session = Depends(get_db),
                  _user: models.User = Depends(auth_utils.require_permission(BOOKS_READ))):
    return crud.get_book_by_id(book_id, session)


@app.put("/books/{book_id}", response_model=BookOut)
def modify_book(book_id: int, book: BookUpdate, session: Session = Depends(get_db),
                _user: models.User = Depends(auth_utils.require_permission(BOOKS_UPDATE))):
    return crud.update_book(book_id, book, session)


@app.delete("/books/{book_id}")
def remove_book(book_id: int, session: Session = Depends(get_db),
                _user: models.User = Depends(auth_utils.require_permission(BOOKS_DELETE))):
    crud.delete_book(book_id, session)
    return {"detail": "Book deleted"}


# Borrowers
@app.get("/borrowers", response_model=BorrowerList)
def list_borrowers(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    search: Optional[str] = None,
    session: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(BORROWERS_READ)),
):
    borrowers, total = crud.get_borrowers(session, skip=skip, limit=limit, search=search)
    return {"borrowers": borrowers, "total": total}


@app.get("/borrowers/list", response_model=List[BorrowerSummary])
def list_borrower_summaries(session: Session = Depends(get_db),
                            _user: models.User = Depends(auth_utils.require_permission(BORROWERS_READ))):
    """Lightweight projection for pickers."""
    return crud.list_borrower_summaries(session)


@app.post("/borrowers", response_model=BorrowerOut, status_code=status.HTTP_201_CREATED)
def create_borrower(borrower: BorrowerCreate, session: Session = Depends(get_db),
                    _user: models.User = Depends(auth_utils.require_permission(BORROWERS_CREATE))):
    return crud.add_borrower(borrower, session)


@app.get("/borrowers/{borrower_id}", response_model=BorrowerOut)
def retrieve_borrower(borrower_id: int, session: Session = Depends(get_db),
                      _user: models.User = Depends(auth_utils.require_permission(BORROWERS_READ))):
    return crud.get_borrower_by_id(borrower_id, session)


@app.put("/borrowers/{borrower_id}", response_model=BorrowerOut)
def modify_borrower(borrower_id: int, borrower: BorrowerUpdate, session: Session = Depends(get_db),
                    _user: models.User = Depends(auth_utils.require_permission(BORROWERS_UPDATE))):
    return crud.update_borrower(borrower_id, borrower, session)


@app.delete("/borrowers/{borrower_id}")
def remove_borrower(borrower_id: int, session: Session = Depends(get_db),
                    _user: models.User = Depends(auth_utils.require_permission(BORROWERS_DELETE))):
    crud.delete_borrower(borrower_id, session)
    return {"detail": "Borrower deleted"}


# Lendings
@app.get("/lendings", response_model=LendingList)
def list_lendings(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    status: Optional[LendingStatusFilter] = None,
    session: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(LENDINGS_READ)),
):
    lendings, total = lending.list_lendings(session, skip=skip, limit=limit, status=status)
    return {"lendings": lendings, "total": total}


@app.post("/lendings", response_model=LendingOut, status_code=status.HTTP_201_CREATED)
def borrow(payload: LendingCreate, session: Session = Depends(get_db),
           _user: models.User = Depends(auth_utils.require_permission(LENDINGS_CREATE))):
    record = lending.borrow_book(payload, session)
    return lending.lending_to_dict(record, models.utcnow())


@app.post("/lendings/return", response_model=LendingOut)
def return_lending(payload: LendingReturn, session: Session = Depends(get_db),
                   _user: models.User = Depends(auth_utils.require_permission(LENDINGS_UPDATE))):
    record = lending.return_book(payload.lending_id, session)
    return lending.lending_to_dict(record, models.utcnow())


@app.post("/lendings/notify-overdue", response_model=OverdueNotificationResult)
def notify_overdue(session: Session = Depends(get_db), notifier=Depends(get_notifier),
                   _user: models.User = Depends(auth_utils.require_permission(LENDINGS_UPDATE))):
    return lending.notify_overdue(session, notifier)


@app.post("/lendings/notify-due-soon", response_model=DueSoonNotificationResult)
def notify_due_soon(session: Session = Depends(get_db), notifier=Depends(get_notifier),
                    _user: models.User = Depends(auth_utils.require_permission(LENDINGS_UPDATE))):
    return lending.notify_due_soon(session, notifier)


# Dashboard
@app.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(session: Session = Depends(get_db),
                    _user: models.User = Depends(auth_utils.require_permission(DASHBOARD_READ))):
    return crud.dashboard_stats(session)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=9000,
        reload=True
    )
