"""Ministry/Department/Agency model."""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Mda(Base):
    """Government obligor on a bill."""

    __tablename__ = "mdas"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
