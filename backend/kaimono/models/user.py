from sqlalchemy import Boolean, Column, DateTime, Integer, String

from kaimono.db import Base
from kaimono.utils.clock import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), nullable=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(16), nullable=False, default="user")  # user, admin
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def display_name(self) -> str:
        full = f"{self.last_name or ''} {self.first_name or ''}".strip()
        return self.username or full or self.email

    def __repr__(self):
        return f"<User id={self.id} email={self.email} role={self.role}>"
