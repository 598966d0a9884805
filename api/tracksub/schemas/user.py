import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    plan: str
    notification_days: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class NotificationSettings(BaseModel):
    notification_days: int = Field(ge=1, le=90)

    model_config = {"from_attributes": True}
