from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, JSON, DateTime, func
from typing import Optional

from .authz import Base


class ProvisioningRequest(Base):
    __tablename__ = 'provisioning_requests'
    # Lifecycle state constants
    STATE_PENDING = 'pending'
    STATE_COMPLETED = 'completed'
    STATE_REJECTED = 'rejected'
    STATE_FAILED = 'failed'
    ALL_STATES = (
        STATE_PENDING,
        STATE_COMPLETED,
        STATE_REJECTED,
        STATE_FAILED,
    )
    TERMINAL_STATES = (STATE_COMPLETED, STATE_REJECTED, STATE_FAILED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    requested_by: Mapped[str] = mapped_column(String(128), nullable=False, default='')
    requested_by_uid: Mapped[Optional[str]] = mapped_column(String(64))
    requester_claims: Mapped[dict] = mapped_column(JSON, default=dict)  # verified claims at enqueue time
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default=STATE_PENDING, index=True)
    error: Mapped[Optional[str]] = mapped_column(String(64))
    created_user_id: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[Optional[str]] = mapped_column(DateTime(timezone=True))
