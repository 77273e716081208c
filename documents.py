import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session

import auth_utils
import crud
import models
import notifier as templates
from database import get_db
from errors import Internal, InvalidInput
from notifier import get_notifier
from permissions import DOCUMENTS_CREATE, DOCUMENTS_DELETE, DOCUMENTS_READ, DOCUMENTS_UPDATE
from schemas import DocumentEmail, DocumentOut, DocumentSign
from storage import BlobStoreError, get_blob_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])

MAX_FILE_SIZE = 10 * 1024 * 1024
ALLOWED_CONTENT_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "image/jpeg",
    "image/jpg",
    "image/png",
}
DOCUMENT_TYPES = {"text", "pdf", "image", "word", "other"}
BLOB_FOLDER = "legal-documents"


def _check_type(doc_type: str) -> str:
    if doc_type not in DOCUMENT_TYPES:
        raise InvalidInput(f"Invalid document type. Allowed: {', '.join(sorted(DOCUMENT_TYPES))}")
    return doc_type


def _store_upload(file: UploadFile, blob_store) -> dict:
    """Validate and upload `file`; returns the blob store's {"url", "public_id"}."""
    data = file.file.read()
    if len(data) > MAX_FILE_SIZE:
        raise InvalidInput("File size exceeds 10MB limit")
    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidInput("Unsupported file type. Allowed: PDF, Word, Text, JPG, PNG")
    try:
        return blob_store.upload(data, BLOB_FOLDER, file.filename)
    except BlobStoreError as e:
        logger.error("Upload of %s failed: %s", file.filename, e)
        raise Internal("Failed to upload file to storage")


def _discard_blob(public_id: Optional[str], blob_store) -> None:
    # an orphaned blob is preferable to blocking the database change
    if not public_id:
        return
    try:
        blob_store.delete(public_id)
    except BlobStoreError as e:
        logger.error("Could not delete blob %s: %s", public_id, e)


def _has_file(file: Optional[UploadFile]) -> bool:
    return file is not None and bool(file.filename)


@router.post("", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
def create_document(
    case_id: int = Form(...),
    title: str = Form(..., min_length=1),
    content: str = Form(...),
    type: str = Form(...),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    blob_store=Depends(get_blob_store),
    current_user: models.User = Depends(auth_utils.require_permission(DOCUMENTS_CREATE)),
):
    _check_type(type)
    crud.get_case_by_id(case_id, db)

    stored = _store_upload(file, blob_store) if _has_file(file) else {}
    document = models.Document(
        case_id=case_id,
        title=title,
        content=content,
        type=type,
        file_url=stored.get("url"),
        blob_public_id=stored.get("public_id"),
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info("Document %s created on case %s by %s", document.id, case_id, current_user.email)
    return document


@router.post("/send-email")
def send_document_email(
    payload: DocumentEmail,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    current_user: models.User = Depends(auth_utils.require_permission(DOCUMENTS_READ)),
):
    document = crud.get_document_by_id(payload.document_id, db)
    case = crud.get_case_by_id(document.case_id, db)

    subject, html = templates.document_email(document.title, case.title, document.file_url,
                                             payload.message, current_user.name or current_user.email)
    subject = payload.subject or subject
    if not notifier.send(payload.recipient_email, subject, html):
        raise Internal("Failed to send email")

    db.add(models.EmailLog(
        document_id=document.id,
        case_id=case.id,
        recipient_email=payload.recipient_email,
        subject=subject,
        message=payload.message,
        sent_by=current_user.id,
    ))
    db.commit()
    return {"message": "Email sent successfully"}


@router.get("/case/{case_pk}", response_model=List[DocumentOut])
def list_case_documents(
    case_pk: int,
    db: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(DOCUMENTS_READ)),
):
    return crud.get_documents_for_case(case_pk, db)


@router.get("/{document_id}", response_model=DocumentOut)
def retrieve_document(
    document_id: int,
    db: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(DOCUMENTS_READ)),
):
    return crud.get_document_by_id(document_id, db)


@router.put("/{document_id}", response_model=DocumentOut)
def modify_document(
    document_id: int,
    title: Optional[str] = Form(None),
    content: Optional[str] = Form(None),
    type: Optional[str] = Form(None),
    remove_file: bool = Form(False),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    blob_store=Depends(get_blob_store),
    _user: models.User = Depends(auth_utils.require_permission(DOCUMENTS_UPDATE)),
):
    document = crud.get_document_by_id(document_id, db)
    if title:
        document.title = title
    if content is not None:
        document.content = content
    if type:
        document.type = _check_type(type)

    old_public_id = None
    if _has_file(file):
        stored = _store_upload(file, blob_store)
        old_public_id = document.blob_public_id
        document.file_url = stored["url"]
        document.blob_public_id = stored["public_id"]
    elif remove_file:
        old_public_id = document.blob_public_id
        document.file_url = None
        document.blob_public_id = None

    db.commit()
    db.refresh(document)
    _discard_blob(old_public_id, blob_store)
    return document


@router.delete("/{document_id}")
def remove_document(
    document_id: int,
    db: Session = Depends(get_db),
    blob_store=Depends(get_blob_store),
    _user: models.User = Depends(auth_utils.require_permission(DOCUMENTS_DELETE)),
):
    document = crud.get_document_by_id(document_id, db)
    public_id = document.blob_public_id
    _discard_blob(public_id, blob_store)
    db.delete(document)
    db.commit()
    return {"detail": "Document deleted"}


@router.post("/{document_id}/sign", response_model=DocumentOut)
def sign_document(
    document_id: int,
    payload: DocumentSign,
    db: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(DOCUMENTS_UPDATE)),
):
    document = crud.get_document_by_id(document_id, db)
    document.signature = payload.signature
    document.signed_by = payload.signed_by
    document.signed_at = models.utcnow()
    db.commit()
    db.refresh(document)
    logger.info("Document %s signed by %s", document_id, payload.signed_by)
    return document
