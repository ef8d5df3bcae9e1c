from __future__ import annotations
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, JSON, UniqueConstraint, DateTime, text
from typing import List, Optional

Base = declarative_base()

# --- Core Models ---
# Roles, departments and modules are static catalogs (erp_core.constants.catalog);
# rows reference them by id string only.

class User(Base):
    __tablename__ = 'users'
    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    ALL_STATUSES = (STATUS_ACTIVE, STATUS_INACTIVE)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_ACTIVE)
    primary_role: Mapped[Optional[str]] = mapped_column(String(32))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False, default='')
    role_assignments = relationship('UserRoleAssignment', back_populates='user', cascade='all, delete-orphan')
    overrides = relationship('UserPermissionOverride', back_populates='user', cascade='all, delete-orphan')
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    @property
    def is_active(self) -> bool:
        return self.status == self.STATUS_ACTIVE

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, raw)


class UserRoleAssignment(Base):
    __tablename__ = 'user_role_assignments'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    departments: Mapped[List[str]] = mapped_column(JSON, default=list)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    __table_args__ = (UniqueConstraint('user_id', 'role', name='uq_user_role_assignment'),)
    user = relationship('User', back_populates='role_assignments')


class UserPermissionOverride(Base):
    __tablename__ = 'user_permission_overrides'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    module: Mapped[str] = mapped_column(String(32), nullable=False)
    actions: Mapped[List[str]] = mapped_column(JSON, default=list)
    __table_args__ = (UniqueConstraint('user_id', 'module', name='uq_user_override_module'),)
    user = relationship('User', back_populates='overrides')
