from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlmodel import SQLModel, Field
from pydantic import EmailStr, StringConstraints
from typing_extensions import Annotated

from app.db.schema import UserRole, UserStatus


class UserRead(SQLModel):
    id: UUID
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: UserRole
    status: UserStatus
    language: str
    created_at: datetime
    last_login_at: Optional[datetime] = None


class UserSignin(SQLModel):
    email: Annotated[EmailStr, StringConstraints(to_lower=True)] = Field(
        description="Registered email address of the user.",
        max_length=255
    )
    password: str = Field(
        min_length=8,
        max_length=128,
        description="Plain text password."
    )


class UserCreate(SQLModel):
    """
    DTO for registration. Carriers also get their company profile created,
    which is why `company_name` is required for them.
    """
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: Annotated[EmailStr, StringConstraints(to_lower=True)] = Field(
        description="Unique email address for signin.",
        max_length=255
    )
    password: str = Field(min_length=8, max_length=128)
    phone: Optional[str] = Field(default=None, max_length=30)
    language: str = Field(default="sq", min_length=2, max_length=5)
    role: UserRole = Field(
        description="SHIPPER, CARRIER or WAREHOUSE. Drivers are created by their carrier; admins are seeded."
    )
    company_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    country: str = Field(default="AL", min_length=2, max_length=2)


class PasswordChange(SQLModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)
