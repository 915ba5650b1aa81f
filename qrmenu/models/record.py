from sqlalchemy import JSON, String, Integer, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column
from qrmenu.core.database import Base
from typing import Any

class Record(Base):
    """One key of the record store (``menu`` or ``menu_history``)."""
    __tablename__ = "records"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
