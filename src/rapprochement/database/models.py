"""SQLAlchemy models for rapprochement database."""

from datetime import datetime, UTC
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    ForeignKey,
    DateTime,
    Date,
    Numeric,
    Boolean,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, Session

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(UTC)


class Partner(Base):
    """Bank, supplier, client or organism."""

    __tablename__ = "partners"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    keywords = Column(String, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)


class Invoice(Base):
    """Sales or purchase invoice."""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True)
    number = Column(String, unique=True, nullable=False)
    kind = Column(String, nullable=False)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=True)
    issue_date = Column(Date, nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False)
    keywords = Column(String, nullable=True)
    reconciliation_ref = Column(String, nullable=True, index=True)
    reconciled_on = Column(Date, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    partner = relationship("Partner")


class Subscription(Base):
    """Recurring partner subscription."""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    reference_date = Column(Date, nullable=True)
    keywords = Column(String, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    partner = relationship("Partner")


class ChargeDeclaration(Base):
    """Recurring social-charge declaration."""

    __tablename__ = "charge_declarations"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    organism = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    reference_date = Column(Date, nullable=True)
    keywords = Column(String, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)


class EntityPayment(Base):
    """Payment recorded for a subscription or declaration by a link."""

    __tablename__ = "entity_payments"

    id = Column(Integer, primary_key=True)
    family = Column(String, nullable=False)
    entity_id = Column(Integer, nullable=False)
    link_number = Column(String, nullable=False, index=True)
    payment_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)


class Statement(Base):
    """Bank statement file."""

    __tablename__ = "statements"

    id = Column(Integer, primary_key=True)
    number = Column(String, unique=True, nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    lines = relationship(
        "TransactionLine", back_populates="statement", cascade="all, delete-orphan"
    )


class TransactionLine(Base):
    """Bank statement row."""

    __tablename__ = "transaction_lines"

    id = Column(Integer, primary_key=True)
    statement_id = Column(Integer, ForeignKey("statements.id"), nullable=False)
    line_number = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    label = Column(String, nullable=False)
    debit = Column(Numeric(12, 2), nullable=False, default=0)
    credit = Column(Numeric(12, 2), nullable=False, default=0)

    # Line numbers survive re-imports, so they are unique per statement
    __table_args__ = (
        UniqueConstraint("statement_id", "line_number", name="uq_statement_line_number"),
    )

    statement = relationship("Statement", back_populates="lines")


class MatchingRule(Base):
    """Automatic reconciliation rule."""

    __tablename__ = "matching_rules"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    rule_type = Column(String, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, nullable=False, default=100)
    score_contribution = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Link(Base):
    """Reconciliation link between a transaction line and a record."""

    __tablename__ = "links"

    id = Column(Integer, primary_key=True)
    link_number = Column(String, unique=True, nullable=True)
    transaction_line_id = Column(Integer, ForeignKey("transaction_lines.id"), nullable=False)
    statement_id = Column(Integer, ForeignKey("statements.id"), nullable=False)
    slot = Column(String, nullable=False)
    family = Column(String, nullable=False)
    entity_id = Column(Integer, nullable=False)
    method = Column(String, nullable=False)
    score = Column(Integer, nullable=True)
    previous_status = Column(String, nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    # Link numbers embed the ID, so IDs of deleted links are never reused
    __table_args__ = (
        UniqueConstraint("transaction_line_id", "slot", name="uq_line_slot"),
        {"sqlite_autoincrement": True},
    )


class LinkEvent(Base):
    """Append-only audit trail of the link ledger."""

    __tablename__ = "link_events"

    id = Column(Integer, primary_key=True)
    kind = Column(String, nullable=False)
    link_number = Column(String, nullable=False, index=True)
    transaction_line_id = Column(Integer, nullable=True)
    statement_id = Column(Integer, nullable=True, index=True)
    family = Column(String, nullable=True)
    entity_id = Column(Integer, nullable=True)
    method = Column(String, nullable=True)
    score = Column(Integer, nullable=True)
    actor = Column(String, nullable=False)
    occurred_at = Column(DateTime, default=_now, nullable=False)
    details = Column(Text, nullable=True)


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory."""
    engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
