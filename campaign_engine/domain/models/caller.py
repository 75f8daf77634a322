"""
Caller Context
Identity of whoever invokes a campaign operation, passed explicitly.
"""
from typing import Optional
from enum import Enum

from pydantic import BaseModel


class UserRole(str, Enum):
    """Roles issued by the session layer"""
    ADMIN = "ADMIN"
    STAFF = "STAFF"


class CallerContext(BaseModel):
    """Authenticated caller"""
    user_id: str
    role: UserRole = UserRole.STAFF
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
