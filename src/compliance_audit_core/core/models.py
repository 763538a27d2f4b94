"""SQLAlchemy ORM models for the compliance audit core.

All tables use the ``cac_`` prefix. Entity tables carry a ``version`` column
used for optimistic compare-and-set writes.

Models:
- CompanyRecord - company with its disclosure (visibility) tier
- ProductRecord - product offered under a company
- InvestmentRecord - investment with paired decimal / minor-unit amounts
- DisclosureRecord - disclosure review lifecycle
- AuditEventRecord - IMMUTABLE audit event
- AuditEventFieldRecord - (entity_type, entity_id, field) index over audit events
- SnapshotRecord - IMMUTABLE, hashed snapshot

IMPORTANT: AuditEventRecord, AuditEventFieldRecord and SnapshotRecord are
insert-only. The repositories in adapters/repositories.py expose no update or
delete path for them.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base for every compliance audit table."""


class EntityRecordMixin:
    """Shared columns of versioned entity tables."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Optimistic concurrency counter, incremented on every write",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class CompanyRecord(EntityRecordMixin, Base):
    """Company and its public disclosure tier.

    Attributes:
        name: Display name.
        disclosure_tier: tier_0_pending | tier_1_upcoming | tier_2_live |
            tier_3_featured. Changed only through the company state machine.
    """

    __tablename__ = "cac_companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    disclosure_tier: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        index=True,
        comment="Visibility tier; NULL is treated as not public",
    )


class ProductRecord(EntityRecordMixin, Base):
    """Product offered under a company. Public only while its company is."""

    __tablename__ = "cac_products"

    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cac_companies.id"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="draft",
        index=True,
        comment="draft | submitted | approved | rejected",
    )


class InvestmentRecord(EntityRecordMixin, Base):
    """Investment with money stored as decimal and authoritative minor units."""

    __tablename__ = "cac_investments"

    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("cac_companies.id"), nullable=False, index=True)
    investor_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="pending",
        index=True,
        comment="pending | processing | completed | failed | cancelled",
    )
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    amount_paise: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fee: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    fee_paise: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class DisclosureRecord(EntityRecordMixin, Base):
    """Company disclosure moving through review."""

    __tablename__ = "cac_disclosures"

    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("cac_companies.id"), nullable=False, index=True)
    module_code: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="draft",
        index=True,
        comment="draft | submitted | under_review | clarification_required | approved | rejected",
    )


class AuditEventRecord(Base):
    """Immutable audit event.

    This table has NO UPDATE or DELETE operations. Corrections are new rows
    with action ``audit.correction`` and ``corrects_event_id`` set.
    """

    __tablename__ = "cac_audit_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        comment="Immutable event timestamp (UTC)",
    )
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    actor_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    module: Mapped[str] = mapped_column(String(100), nullable=False)
    old_values: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    new_values: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    corrects_event_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("cac_audit_events.id"),
        nullable=True,
        index=True,
    )


class AuditEventFieldRecord(Base):
    """One row per field touched by an audit event, for field history lookups."""

    __tablename__ = "cac_audit_event_fields"

    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("cac_audit_events.id"), primary_key=True)
    field: Mapped[str] = mapped_column(String(100), primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SnapshotRecord(Base):
    """Immutable snapshot.

    ``payload`` holds the full JSON form of the snapshot; the other columns
    duplicate lookup keys. Verification always recomputes the hash from the
    payload.
    """

    __tablename__ = "cac_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subject_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    trigger: Mapped[str] = mapped_column(String(100), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    supersedes_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("cac_snapshots.id"), nullable=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, comment="SHA-256 hex digest")
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)


ENTITY_RECORDS: dict[str, type[EntityRecordMixin]] = {
    "company": CompanyRecord,
    "product": ProductRecord,
    "investment": InvestmentRecord,
    "disclosure": DisclosureRecord,
}
