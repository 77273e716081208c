import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

import auth_utils
import config
import crud
import models
import notifier as templates
from database import get_db
from errors import Conflict, Forbidden, InvalidInput
from notifier import get_notifier
from permissions import USERS_CREATE, USERS_DELETE, USERS_READ, USERS_UPDATE
from user_schemas import (
    Invite,
    InviteAccept,
    Message,
    PasswordChange,
    ResetRequest,
    ResetVerify,
    UserCreate,
    UserList,
    UserResponse,
    UserUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    responses={404: {"description": "Not found"}},
)


def _self_or_permission(current_user: models.User, user_id: int, permission: str) -> bool:
    """True when acting on one's own record; otherwise `permission` is required."""
    if current_user.id == user_id:
        return True
    granted = auth_utils.user_permissions(current_user)
    if permission not in granted:
        raise Forbidden(required=permission, has=list(granted))
    return False


@router.get("", response_model=UserList)
def read_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    _user: models.User = Depends(auth_utils.require_permission(USERS_READ)),
):
    users, total = crud.get_users(db, skip=skip, limit=limit, search=search)
    return {"users": users, "total": total}


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    user: UserCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth_utils.require_permission(USERS_CREATE)),
):
    created = crud.add_user(user.email, db, name=user.name, password=user.password, role=user.role.value,
                            permissions=user.permissions, is_active=user.is_active)
    logger.info("User %s created by %s", created.email, current_user.email)
    return created


@router.post("/invite", status_code=status.HTTP_201_CREATED)
def invite_user(
    invite: Invite,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
    current_user: models.User = Depends(auth_utils.require_permission(USERS_CREATE)),
):
    token = crud.generate_token()
    user = crud.add_user(
        invite.email, db,
        role=invite.role.value,
        permissions=invite.permissions,
        is_active=False,
        invitation_token=token,
        invitation_expires=models.utcnow() + timedelta(hours=config.INVITATION_EXPIRE_HOURS),
    )
    subject, html = templates.invitation_email(token)
    sent = notifier.send(user.email, subject, html)
    logger.info("User %s invited by %s (email sent: %s)", user.email, current_user.email, sent)
    return {"message": "Invitation sent successfully" if sent else "User invited but the invitation email could not be sent",
            "user_id": user.id, "email_sent": sent}


@router.post("/invite/accept", response_model=UserResponse)
def accept_invitation(payload: InviteAccept, db: Session = Depends(get_db)):
    user = (
        db.query(models.User)
        .filter(models.User.invitation_token == payload.token, models.User.invitation_expires > models.utcnow())
        .first()
    )
    if not user:
        raise InvalidInput("Invalid or expired invitation token")
    user.name = payload.name
    user.hashed_password = auth_utils.get_password_hash(payload.password)
    user.is_active = True
    user.invitation_token = None
    user.invitation_expires = None
    db.commit()
    db.refresh(user)
    logger.info("Invitation accepted by %s", user.email)
    return user


@router.post("/password/reset", response_model=Message)
def request_password_reset(payload: ResetRequest, db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    # same answer whether or not the address is registered
    response = {"message": "If your email is registered, you will receive a password reset link"}
    user = crud.get_user_by_email(payload.email, db)
    if not user or not user.is_active:
        return response

    token = crud.generate_token()
    user.reset_token = token
    user.reset_token_expires = models.utcnow() + timedelta(hours=config.RESET_TOKEN_EXPIRE_HOURS)
    db.commit()
    subject, html = templates.password_reset_email(token)
    notifier.send(user.email, subject, html)
    return response


@router.post("/password/verify", response_model=Message)
def verify_password_reset(payload: ResetVerify, db: Session = Depends(get_db)):
    user = (
        db.query(models.User)
        .filter(models.User.reset_token == payload.token, models.User.reset_token_expires > models.utcnow())
        .first()
    )
    if not user:
        raise InvalidInput("Invalid or expired reset token")
    user.hashed_password = auth_utils.get_password_hash(payload.password)
    user.reset_token = None
    user.reset_token_expires = None
    db.commit()
    logger.info("Password reset completed for %s", user.email)
    return {"message": "Password updated successfully"}


@router.get("/{user_id}", response_model=UserResponse)
def read_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth_utils.get_current_user),
):
    _self_or_permission(current_user, user_id, USERS_READ)
    return crud.get_user_by_id(user_id, db)


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    user: UserUpdate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth_utils.get_current_user),
):
    """Partial update. Tokens resolve by email, so changing your own email returns
    a fresh token in the `X-Access-Token` header."""
    _self_or_permission(current_user, user_id, USERS_UPDATE)
    update_data = user.model_dump(exclude_unset=True)

    # role, grants and activation are never self-service
    privileged = {"role", "permissions", "is_active"} & update_data.keys()
    if privileged:
        granted = auth_utils.user_permissions(current_user)
        if USERS_UPDATE not in granted:
            raise Forbidden(required=USERS_UPDATE, has=list(granted))

    db_user = crud.get_user_by_id(user_id, db)
    email_changed = False
    if update_data.get("email") and update_data["email"].lower() != db_user.email:
        if crud.get_user_by_email(update_data["email"], db):
            raise Conflict("Email already registered")
        db_user.email = update_data["email"].lower()
        email_changed = True
    if update_data.get("name"):
        db_user.name = update_data["name"]
    if update_data.get("role") is not None:
        db_user.role = update_data["role"].value
    if update_data.get("permissions") is not None:
        db_user.permissions = crud.validate_permissions(update_data["permissions"])
    if update_data.get("is_active") is not None:
        db_user.is_active = update_data["is_active"]

    db.commit()
    db.refresh(db_user)
    if email_changed and db_user.id == current_user.id:
        response.headers["X-Access-Token"] = auth_utils.create_access_token(db_user)
    logger.info("User %s updated by %s (%s)", db_user.id, current_user.email, ", ".join(sorted(update_data)))
    return db_user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth_utils.require_permission(USERS_DELETE)),
):
    if user_id == current_user.id:
        raise InvalidInput("Cannot delete your own account")
    db_user = crud.get_user_by_id(user_id, db)
    db.query(models.Case).filter(models.Case.assigned_to == user_id).update(
        {"assigned_to": None}, synchronize_session=False)
    db.query(models.Reminder).filter(models.Reminder.assigned_to == user_id).delete(synchronize_session=False)
    db.delete(db_user)
    db.commit()
    logger.info("User %s deleted by %s", user_id, current_user.email)
    return None


@router.put("/{user_id}/password", response_model=Message)
def change_password(
    user_id: int,
    payload: PasswordChange,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth_utils.get_current_user),
):
    is_self = _self_or_permission(current_user, user_id, USERS_UPDATE)
    db_user = crud.get_user_by_id(user_id, db)

    if is_self:
        if not payload.current_password or not auth_utils.verify_password(payload.current_password, db_user.hashed_password):
            raise InvalidInput("Current password is incorrect")
    elif not payload.admin_override:
        raise InvalidInput("admin_override is required to change another user's password")

    db_user.hashed_password = auth_utils.get_password_hash(payload.new_password)
    db.commit()
    logger.info("Password of user %s changed by %s", user_id, current_user.email)
    return {"message": "Password updated successfully"}
