"""User model."""
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Enum as SqlEnum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Role(str, PyEnum):
    """Portal roles; every actor holds exactly one."""

    SUPPLIER = "supplier"
    SPV = "spv"
    MDA = "mda"
    TREASURY = "treasury"
    ADMIN = "admin"


class User(Base):
    """A portal user. MDA users carry their MDA id in ``role_scope_id``."""

    __tablename__ = "users"
    __table_args__ = (Index("ix_users_role_scope", "role", "role_scope_id"),)

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[Role] = mapped_column(SqlEnum(Role, name="user_role"), nullable=False)
    role_scope_id: Mapped[int | None] = mapped_column(ForeignKey("mdas.id"), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
