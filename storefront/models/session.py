# storefront/models/session.py
from datetime import datetime
from enum import Enum
from typing import Dict
from pydantic import BaseModel, Field

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"

class CurrentUser(BaseModel):
    """Authenticated identity supplied by the boundary"""
    id: int
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

class CorrelationKind(str, Enum):
    ORDER = "order"
    TOPUP = "topup"

class Correlation(BaseModel):
    """Maps a provider reference back to the local order or top-up"""
    kind: CorrelationKind
    target_id: int
    user_id: int
    created_at: datetime

class SessionContext(BaseModel):
    """Per-user state passed explicitly into handlers"""
    user: CurrentUser
    correlations: Dict[str, Correlation] = Field(default_factory=dict)
