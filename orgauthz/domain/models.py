from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from orgauthz.domain.roles import AUDIT_STATUS_VALUES, ROLE_VALUES, TIER_VALUES, Role


# JSONB on Postgres, plain JSON elsewhere so the models also build on SQLite.
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    # Mirror of the external identity store; ids are opaque and trusted as given.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )


class Organization(Base):
    __tablename__ = "organizations"
    __table_args__ = (
        CheckConstraint(_in_list("tier", TIER_VALUES), name="ck_organizations_tier"),
        CheckConstraint("max_apps >= 0", name="ck_organizations_max_apps"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    # Slug format and immutability are enforced by the migration (regex CHECK + trigger).
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    tier: Mapped[str] = mapped_column(String, default="standard")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_apps: Mapped[int] = mapped_column(Integer, default=25, nullable=False)
    settings: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now(), onupdate=_utc_now
    )


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (
        CheckConstraint(_in_list("role", ROLE_VALUES), name="ck_user_roles_role"),
        # Platform roles carry no organization and every other role must carry one.
        CheckConstraint(
            f"(organization_id IS NULL) = (role = '{Role.SUPER_ADMIN.value}')",
            name="ck_user_roles_platform_scope",
        ),
    )

    # One row per identity: the primary key is the user id.
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    organization_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("organizations.id"), nullable=True, index=True
    )
    role: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now(), onupdate=_utc_now
    )


class AgencyClient(Base):
    __tablename__ = "agency_clients"
    __table_args__ = (
        UniqueConstraint("agency_org_id", "client_org_id", name="uq_agency_clients_pair"),
        CheckConstraint("agency_org_id <> client_org_id", name="ck_agency_clients_not_self"),
        Index("ix_agency_clients_client_active", "client_org_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    agency_org_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id"), index=True
    )
    client_org_id: Mapped[str] = mapped_column(String, ForeignKey("organizations.id"))
    # Deactivation is the only revocation path; rows are kept for history.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now(), onupdate=_utc_now
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        CheckConstraint(_in_list("status", AUDIT_STATUS_VALUES), name="ck_audit_logs_status"),
        Index("ix_audit_logs_user_created", "user_id", text("created_at DESC")),
        Index("ix_audit_logs_org_created", "organization_id", text("created_at DESC")),
        Index("ix_audit_logs_action_created", "action", text("created_at DESC")),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    organization_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )
    # Captured at write time so the trail survives later identity changes.
    user_email: Mapped[str | None] = mapped_column(String, nullable=True)
    action: Mapped[str] = mapped_column(String)
    resource_type: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_path: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="success")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )


class OrgAppAccess(Base):
    __tablename__ = "org_app_access"
    __table_args__ = (
        UniqueConstraint("organization_id", "app_id", name="uq_org_app_access_app"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id"), index=True
    )
    app_id: Mapped[str] = mapped_column(String)
    attached_by: Mapped[str | None] = mapped_column(String, nullable=True)
    attached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    # Soft detach keeps the attach history for quota and audit review.
    detached_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ReviewCache(Base):
    __tablename__ = "review_cache"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id"), index=True
    )
    app_id: Mapped[str] = mapped_column(String, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id"), index=True
    )
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"))
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
