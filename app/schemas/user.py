"""User and MDA schemas."""
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from app.models.user import Role


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    role: Role
    role_scope_id: int | None = None
    company_name: str | None = None
    is_active: bool = True

    @model_validator(mode="after")
    def _mda_users_need_scope(self) -> "UserCreate":
        if self.role == Role.MDA and self.role_scope_id is None:
            raise ValueError("MDA users require role_scope_id")
        if self.role != Role.MDA and self.role_scope_id is not None:
            raise ValueError("role_scope_id is only meaningful for MDA users")
        return self


class UserRead(BaseModel):
    id: int
    username: str
    email: EmailStr
    role: Role
    role_scope_id: int | None = None
    company_name: str | None = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class MdaCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)


class MdaRead(BaseModel):
    id: int
    code: str
    name: str

    model_config = ConfigDict(from_attributes=True)
