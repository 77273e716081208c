import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

import auth_schemas
import auth_utils
import crud
import models
from database import get_db
from errors import Unauthorized
from permissions import Role
from user_schemas import UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(user: auth_schemas.UserRegister, db: Session = Depends(get_db)):
    # self-registration always yields a plain User; elevation goes through /users
    return crud.add_user(user.email, db, name=user.name, password=user.password, role=Role.USER.value)


@router.post("/login", response_model=auth_schemas.Token)
def login(request: Request, login_data: auth_schemas.UserLogin, db: Session = Depends(get_db)):
    client_ip = request.client.host if request.client else None
    user = crud.get_user_by_email(login_data.email, db)

    if not user or not auth_utils.verify_password(login_data.password, user.hashed_password):
        logger.info("Failed login for %s from %s", login_data.email, client_ip)
        raise Unauthorized("Incorrect email or password")
    if not user.is_active:
        logger.info("Login refused for inactive user %s", user.email)
        raise Unauthorized("Account is inactive")

    logger.info("User %s logged in from %s", user.email, client_ip)
    return {
        "access_token": auth_utils.create_access_token(user),
        "token_type": "bearer",
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
    }


@router.get("/me", response_model=auth_schemas.Me)
def read_users_me(current_user: models.User = Depends(auth_utils.get_current_user)):
    return {
        "id": current_user.id,
        "email": current_user.email,
        "name": current_user.name,
        "role": current_user.role,
        "permissions": sorted(auth_utils.user_permissions(current_user)),
    }


@router.post("/logout")
def logout():
    # Tokens are stateless; the client discards its copy.
    return {"message": "Successfully logged out"}
