from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.qms.models import Base

if TYPE_CHECKING:
    from app.qms.models import User
    from app.qms.modules.assessments.models import Assessment, QuestionResponse


class NonConformity(Base):
    __tablename__ = "non_conformities"
    __table_args__ = (
        Index("idx_non_conformities_assessment", "assessment_id"),
        Index("idx_non_conformities_status", "status"),
        Index("idx_non_conformities_severity", "severity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assessment_id: Mapped[int] = mapped_column(ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False)
    response_id: Mapped[int | None] = mapped_column(ForeignKey("question_responses.id", ondelete="SET NULL"), nullable=True)

    # Required
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)  # MINOR, MAJOR, CRITICAL
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="OPEN")  # OPEN, IN_PROGRESS, RESOLVED, CLOSED

    # Root cause analysis
    root_cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    root_cause_method: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "5 Whys", "Fishbone"

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Relationships
    assessment: Mapped["Assessment"] = relationship("Assessment", back_populates="non_conformities")
    response: Mapped["QuestionResponse | None"] = relationship("QuestionResponse", back_populates="non_conformities")
    corrective_actions: Mapped[list["CorrectiveAction"]] = relationship(
        "CorrectiveAction",
        back_populates="non_conformity",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CorrectiveAction.created_at",
    )


class CorrectiveAction(Base):
    __tablename__ = "corrective_actions"
    __table_args__ = (
        Index("idx_corrective_actions_ncr", "non_conformity_id"),
        Index("idx_corrective_actions_status", "status"),
        Index("idx_corrective_actions_assignee", "assigned_to_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    non_conformity_id: Mapped[int] = mapped_column(ForeignKey("non_conformities.id", ondelete="CASCADE"), nullable=False)

    # Required
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")  # PENDING, IN_PROGRESS, COMPLETED, VERIFIED
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")  # LOW, MEDIUM, HIGH, CRITICAL

    # Dates
    target_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    verified_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Verification
    effectiveness_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Relationships
    non_conformity: Mapped[NonConformity] = relationship("NonConformity", back_populates="corrective_actions")
    assigned_to: Mapped["User | None"] = relationship("User", foreign_keys=[assigned_to_id], lazy="joined")
    verified_by: Mapped["User | None"] = relationship("User", foreign_keys=[verified_by_id], lazy="joined")
