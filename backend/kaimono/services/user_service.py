import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from kaimono.errors import AuthenticationError, DuplicateEmailError, InvalidRequestError, NotFoundError
from kaimono.models.user import User
from kaimono.security import get_password_hash, verify_password

log = logging.getLogger(__name__)

ROLES = ("user", "admin")
PROFILE_FIELDS = ("username", "first_name", "last_name", "phone")


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()

    def register(self, data: Dict, role: str = "user") -> User:
        email = (data.get("email") or "").strip().lower()
        if not email or "@" not in email:
            raise InvalidRequestError("A valid email is required")
        if len(data.get("password") or "") < 8:
            raise InvalidRequestError("Password must be at least 8 characters")
        if self.by_email(email):
            raise DuplicateEmailError(email)
        user = User(
            email=email,
            password_hash=get_password_hash(data["password"]),
            role=role,
            **{k: data.get(k) for k in PROFILE_FIELDS},
        )
        self.db.add(user)
        self.db.commit()
        log.info("registered user %s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.by_email(email or "")
        if not user or not verify_password(password or "", user.password_hash):
            raise AuthenticationError("Invalid email or password")
        if not user.is_active:
            raise AuthenticationError("Account is disabled")
        return user

    def update_profile(self, user: User, data: Dict) -> User:
        for k in PROFILE_FIELDS:
            if data.get(k) is not None:
                setattr(user, k, data[k])
        if data.get("password"):
            if len(data["password"]) < 8:
                raise InvalidRequestError("Password must be at least 8 characters")
            user.password_hash = get_password_hash(data["password"])
        self.db.commit()
        return user

    # --- admin ---

    def list(self, q: Optional[str] = None, role: Optional[str] = None, page: int = 1, size: int = 20) -> Tuple[List[User], int]:
        query = self.db.query(User)
        if role:
            query = query.filter(User.role == role)
        if q:
            like = f"%{q}%"
            query = query.filter(or_(User.email.ilike(like), User.username.ilike(like), User.last_name.ilike(like)))
        total = query.with_entities(func.count(User.id)).scalar() or 0
        rows = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * size).limit(size).all()
        return rows, total

    def get(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def admin_update(self, user_id: int, data: Dict, actor: User) -> Tuple[User, Dict]:
        user = self.get(user_id)
        old = {"role": user.role, "is_active": user.is_active}
        if data.get("role") is not None:
            if data["role"] not in ROLES:
                raise InvalidRequestError(f"Unknown role: {data['role']}")
            if user.id == actor.id and data["role"] != "admin":
                raise InvalidRequestError("You cannot remove your own admin role")
            user.role = data["role"]
        if data.get("is_active") is not None:
            if user.id == actor.id and not data["is_active"]:
                raise InvalidRequestError("You cannot deactivate your own account")
            user.is_active = data["is_active"]
        for k in PROFILE_FIELDS:
            if data.get(k) is not None:
                setattr(user, k, data[k])
        self.db.commit()
        return user, old

    def delete(self, user_id: int, actor: User):
        if user_id == actor.id:
            raise InvalidRequestError("You cannot delete your own account")
        user = self.get(user_id)
        self.db.delete(user)
        self.db.commit()
