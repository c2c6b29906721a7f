from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional
import uuid
from app.core.clock import utc_now


class PasswordResetToken(SQLModel, table=True):
    __tablename__ = "password_reset_tokens"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    user_id: str = Field(foreign_key="app_users.id", index=True, max_length=36, ondelete="CASCADE")
    token_hash: str = Field(max_length=64)
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
