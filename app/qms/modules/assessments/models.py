from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.qms.models import Base

if TYPE_CHECKING:
    from app.qms.models import User
    from app.qms.modules.nonconformities.models import NonConformity
    from app.qms.modules.standards.models import AuditQuestion, ISOStandardSection


class AssessmentTemplate(Base):
    __tablename__ = "assessment_templates"
    __table_args__ = (Index("idx_assessment_templates_org", "organization_id"),)

    # Static UUIDs for seeded templates
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Section selectors; both null means "all sections"
    included_clauses: Mapped[list | None] = mapped_column(JSON, nullable=True)  # e.g. ["5", "6"]
    included_sections: Mapped[list | None] = mapped_column(JSON, nullable=True)  # explicit section ids

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Assessment(Base):
    __tablename__ = "assessments"
    __table_args__ = (
        Index("idx_assessments_org", "organization_id"),
        Index("idx_assessments_status", "status"),
        Index("idx_assessments_completed_date", "completed_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)

    # Required
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="DRAFT")  # DRAFT, IN_PROGRESS, UNDER_REVIEW, COMPLETED, ARCHIVED
    audit_type: Mapped[str] = mapped_column(String(32), nullable=False, default="INTERNAL")  # INTERNAL, EXTERNAL, SURVEILLANCE, CERTIFICATION
    lead_auditor_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    # Optional metadata
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    objectives: Mapped[list | None] = mapped_column(JSON, nullable=True)
    template_id: Mapped[str | None] = mapped_column(ForeignKey("assessment_templates.id", ondelete="SET NULL"), nullable=True)
    previous_assessment_id: Mapped[int | None] = mapped_column(ForeignKey("assessments.id", ondelete="SET NULL"), nullable=True)

    # Dates
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Derived from submitted responses
    overall_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    section_scores: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Relationships
    lead_auditor: Mapped["User"] = relationship("User", foreign_keys=[lead_auditor_id], lazy="joined")
    template: Mapped[AssessmentTemplate | None] = relationship("AssessmentTemplate", lazy="joined")
    team_members: Mapped[list["AssessmentTeamMember"]] = relationship(
        "AssessmentTeamMember",
        back_populates="assessment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    responses: Mapped[list["QuestionResponse"]] = relationship(
        "QuestionResponse",
        back_populates="assessment",
        cascade="all, delete-orphan",
    )
    non_conformities: Mapped[list["NonConformity"]] = relationship(
        "NonConformity",
        back_populates="assessment",
        cascade="all, delete-orphan",
    )

    def is_team_member(self, user_id: int) -> bool:
        return any(tm.user_id == user_id for tm in self.team_members)


class AssessmentTeamMember(Base):
    __tablename__ = "assessment_team_members"
    __table_args__ = (UniqueConstraint("assessment_id", "user_id", name="uq_team_member_assessment_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assessment_id: Mapped[int] = mapped_column(ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="AUDITOR")  # LEAD_AUDITOR, AUDITOR, OBSERVER

    assessment: Mapped[Assessment] = relationship("Assessment", back_populates="team_members")
    user: Mapped["User"] = relationship("User", lazy="joined")


class QuestionResponse(Base):
    __tablename__ = "question_responses"
    __table_args__ = (
        UniqueConstraint("assessment_id", "question_id", name="uq_response_assessment_question"),
        Index("idx_question_responses_section", "section_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assessment_id: Mapped[int] = mapped_column(ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[int] = mapped_column(ForeignKey("audit_questions.id", ondelete="CASCADE"), nullable=False)
    section_id: Mapped[int | None] = mapped_column(ForeignKey("iso_standard_sections.id", ondelete="SET NULL"), nullable=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    score: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0..5, null = N/A
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    action_proposal: Mapped[str | None] = mapped_column(Text, nullable=True)
    conclusion: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    assessment: Mapped[Assessment] = relationship("Assessment", back_populates="responses")
    question: Mapped["AuditQuestion"] = relationship("AuditQuestion", lazy="joined")
    section: Mapped["ISOStandardSection | None"] = relationship("ISOStandardSection", lazy="joined")
    non_conformities: Mapped[list["NonConformity"]] = relationship("NonConformity", back_populates="response")
