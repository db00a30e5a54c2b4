"""
Key-Value Store Model.

The tutoring engine persists everything (event logs, profiles, active
sessions) as JSON documents under string keys:

- events:{learner_id}
- profile:{learner_id}
- session:{learner_id}

`revision` increases on every write and backs compare-and-set merges.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class KeyValueRecord(Base):
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<KeyValueRecord key={self.key} revision={self.revision}>"
