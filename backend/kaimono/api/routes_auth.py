from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kaimono.config import Settings
from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.schemas.user_schema import UserOut
from kaimono.security import get_current_user, get_settings, token_for
from kaimono.services.user_service import UserService

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterIn(BaseModel):
    email: str
    password: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class LoginIn(BaseModel):
    email: str
    password: str


class ProfileIn(BaseModel):
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None


def _session_body(user: User, settings: Settings):
    return {
        "success": True,
        "token": token_for(user, settings),
        "token_type": "bearer",
        "user": UserOut.model_validate(user).model_dump(),
    }


@router.post("/register", status_code=201, summary="Register a customer account")
def register(payload: RegisterIn, db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = UserService(db).register(payload.model_dump())
    return _session_body(user, settings)


@router.post("/login", summary="Log in with email and password")
def login(payload: LoginIn, db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = UserService(db).authenticate(payload.email, payload.password)
    return _session_body(user, settings)


@router.get("/me", summary="Current user")
def me(user: User = Depends(get_current_user)):
    return {"success": True, "user": UserOut.model_validate(user).model_dump()}


@router.put("/profile", summary="Update own profile")
def update_profile(payload: ProfileIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    user = UserService(db).update_profile(user, payload.model_dump(exclude_unset=True))
    return {"success": True, "user": UserOut.model_validate(user).model_dump()}
