from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from accord.utils import json_parse, parse_id_list, utc_now


class Base(DeclarativeBase):
    pass


class AgreementType(str, Enum):
    MENTORSHIP = "Mentorship"
    CO_FOUNDER = "Co-Founder"


class AgreementStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    COUNTERED = "Countered"


class PaymentType(str, Enum):
    HOURLY = "Hourly"
    EQUITY = "Equity"
    HYBRID = "Hybrid"


AGREEMENT_TYPES = frozenset(t.value for t in AgreementType)
STATUSES = frozenset(s.value for s in AgreementStatus)
PAYMENT_TYPES = frozenset(p.value for p in PaymentType)
TERMINAL_STATUSES = frozenset({
    AgreementStatus.REJECTED.value, AgreementStatus.COMPLETED.value, AgreementStatus.CANCELLED.value,
})
# Pending and Accepted agreements block a second original proposal between the same parties.
ACTIVE_STATUSES = (AgreementStatus.PENDING.value, AgreementStatus.ACCEPTED.value)

HOURLY_PAYMENTS = frozenset({PaymentType.HOURLY.value, PaymentType.HYBRID.value})
EQUITY_PAYMENTS = frozenset({PaymentType.EQUITY.value, PaymentType.HYBRID.value})


class Agreement(Base):
    __tablename__ = "agreements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    agreement_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    payment_type: Mapped[str] = mapped_column(String(30), nullable=False)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    equity_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    weekly_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    milestone_ids_json: Mapped[str] = mapped_column(Text, default="[]")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    tasks: Mapped[str] = mapped_column(Text, nullable=False)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    participants: Mapped[list[AgreementParticipant]] = relationship(
        "AgreementParticipant",
        back_populates="agreement",
        foreign_keys="AgreementParticipant.agreement_id",
        cascade="all, delete-orphan",
        order_by="AgreementParticipant.id",
    )

    @property
    def milestone_ids(self) -> list[int]:
        return parse_id_list(json_parse(self.milestone_ids_json, []))

    @milestone_ids.setter
    def milestone_ids(self, value) -> None:
        self.milestone_ids_json = json.dumps(parse_id_list(value))

    def apply_terms(self, draft) -> None:
        """Copy negotiated terms from a draft (any object with the same attribute names).

        ``status`` is never copied; it only changes through the transition engine.
        """
        for name in ("agreement_type", "payment_type", "hourly_rate", "equity_percentage",
                     "weekly_hours", "start_date", "end_date", "tasks", "terms"):
            setattr(self, name, getattr(draft, name))
        self.milestone_ids = draft.milestone_ids

    @property
    def is_pending(self) -> bool:
        return self.status == AgreementStatus.PENDING.value

    @property
    def is_countered(self) -> bool:
        return self.status == AgreementStatus.COUNTERED.value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Agreement id={self.id} {self.agreement_type} {self.status}>"


class AgreementParticipant(Base):
    __tablename__ = "agreement_participants"
    __table_args__ = (
        UniqueConstraint("agreement_id", "user_id", name="uq_agreement_participants_agreement_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agreement_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agreements.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    project_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_initiator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    counter_agreement_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("agreements.id"), nullable=True, index=True,
    )
    # Same value on every row of one agreement; written only by negotiation.pass_turn_to().
    accept_or_counter_turn_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    agreement: Mapped[Agreement] = relationship(
        "Agreement", back_populates="participants", foreign_keys=[agreement_id],
    )

    def __repr__(self) -> str:
        return f"<AgreementParticipant agreement={self.agreement_id} user={self.user_id} {self.user_role}>"
