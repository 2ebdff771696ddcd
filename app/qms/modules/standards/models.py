from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.qms.models import Base


class ISOStandardSection(Base):
    __tablename__ = "iso_standard_sections"
    __table_args__ = (
        Index("idx_iso_sections_parent", "parent_id"),
        Index("idx_iso_sections_order", "order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    section_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # e.g. "5.1.2"
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("iso_standard_sections.id", ondelete="CASCADE"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    parent: Mapped["ISOStandardSection | None"] = relationship(
        "ISOStandardSection",
        remote_side="ISOStandardSection.id",
        back_populates="children",
    )
    children: Mapped[list["ISOStandardSection"]] = relationship(
        "ISOStandardSection",
        back_populates="parent",
        order_by="ISOStandardSection.order",
    )
    questions: Mapped[list["AuditQuestion"]] = relationship(
        "AuditQuestion",
        back_populates="section",
        order_by="AuditQuestion.order",
    )

    @property
    def clause(self) -> str:
        """Top-level clause number, e.g. "8" for "8.5.1"."""
        return self.section_number.split(".", 1)[0]


class AuditQuestion(Base):
    __tablename__ = "audit_questions"
    __table_args__ = (
        Index("idx_audit_questions_section", "section_id"),
        Index("idx_audit_questions_active", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    section_id: Mapped[int] = mapped_column(ForeignKey("iso_standard_sections.id", ondelete="CASCADE"), nullable=False)
    question_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # e.g. "8.5-01"
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    guidance: Mapped[str | None] = mapped_column(Text, nullable=True)
    standard_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    section: Mapped[ISOStandardSection] = relationship("ISOStandardSection", back_populates="questions")
