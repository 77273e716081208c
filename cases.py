import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

import auth_utils
import crud
import models
import notifier as templates
from database import get_db
from errors import NotFound
from notifier import get_notifier
from permissions import CASES_CREATE, CASES_DELETE, CASES_READ, CASES_UPDATE
from schemas import CaseCreate, CaseList, CaseOut, CaseStatus, CaseUpdate, ReminderCreate, ReminderOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cases", tags=["Cases"])


@router.get("", response_model=CaseList)
def list_cases(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    search: Optional[str] = None,
    status: Optional[CaseStatus] = None,
    db: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(CASES_READ)),
):
    cases, total = crud.get_cases(db, skip=skip, limit=limit, search=search, status=status)
    return {"cases": [crud.case_to_dict(c) for c in cases], "total": total}


@router.post("", response_model=CaseOut, status_code=status.HTTP_201_CREATED)
def create_case(
    case: CaseCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth_utils.require_permission(CASES_CREATE)),
):
    created = crud.add_case(case, db)
    logger.info("Case %s created by %s", created.case_id, current_user.email)
    return crud.case_to_dict(created)


@router.post("/reminders", status_code=status.HTTP_201_CREATED)
def create_reminder(
    payload: ReminderCreate,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    _user: models.User = Depends(auth_utils.require_permission(CASES_UPDATE)),
):
    """Create a reminder for a case and notify the assignee straight away.

    The reminder stays `pending` until the sweep in `reminders.py` sends it as the due date nears.
    """
    case = crud.get_case_by_id(payload.case_id, db)
    assignee = db.query(models.User).filter(models.User.id == payload.assigned_to).first()
    if not assignee or not assignee.email:
        raise NotFound("Assigned user not found or has no email")

    reminder = models.Reminder(
        case_id=case.id,
        assigned_to=assignee.id,
        due_date=payload.due_date,
        message=payload.message,
        status="pending",
    )
    db.add(reminder)
    db.commit()
    db.refresh(reminder)

    subject, html = templates.case_reminder_email(assignee.name, case.title, case.case_id, case.client_name,
                                                  reminder.due_date, reminder.message)
    sent = notifier.send(assignee.email, subject, html)
    return {
        "message": "Reminder created and notification sent" if sent else "Reminder created but the notification could not be sent",
        "email_sent": sent,
        "reminder": ReminderOut.model_validate(reminder),
    }


@router.get("/{case_pk}", response_model=CaseOut)
def retrieve_case(
    case_pk: int,
    db: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(CASES_READ)),
):
    return crud.case_to_dict(crud.get_case_by_id(case_pk, db))


@router.put("/{case_pk}", response_model=CaseOut)
def modify_case(
    case_pk: int,
    case: CaseUpdate,
    db: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(CASES_UPDATE)),
):
    return crud.case_to_dict(crud.update_case(case_pk, case, db))


@router.delete("/{case_pk}")
def remove_case(
    case_pk: int,
    db: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(CASES_DELETE)),
):
    crud.delete_case(case_pk, db)
    return {"detail": "Case deleted"}
