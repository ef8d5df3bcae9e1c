from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, DateTime, func

from .authz import Base


class SequenceRecord(Base):
    """Authoritative counter for one sequence key.

    Created lazily on first issuance from the seed definition; bumped exactly once per
    successful issuance; never deleted. ``version_id`` makes every UPDATE conditional on
    the version that was read, so a concurrent writer surfaces as StaleDataError.
    """
    __tablename__ = 'sequences'
    key: Mapped[str] = mapped_column(String(32), primary_key=True)
    prefix: Mapped[str] = mapped_column(String(16), nullable=False)
    padding: Mapped[int] = mapped_column(Integer, nullable=False)
    next_number: Mapped[int] = mapped_column(Integer, nullable=False)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {'version_id_col': version_id}

    def __repr__(self) -> str:
        return f'<SequenceRecord key={self.key!r} next={self.next_number}>'
