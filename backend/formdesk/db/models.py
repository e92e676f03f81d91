import json
import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from formdesk.db.database import Base
from formdesk.db.enums import ANONYMOUS_SUBMITTER


def generate_id() -> str:
    return str(uuid.uuid4())


class Form(Base):
    __tablename__ = "forms"
    __table_args__ = (
        Index("ix_forms_created_by", "created_by"),
        Index("ix_forms_published", "published"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    published = Column(Boolean, default=False, nullable=False)
    created_by = Column(String(255), nullable=False)  # Owner id from the identity provider
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    fields = relationship(
        "Field",
        back_populates="form",
        foreign_keys="[Field.form_id]",
        order_by="Field.order",
    )
    responses = relationship("Response", back_populates="form")


class Field(Base):
    __tablename__ = "fields"
    __table_args__ = (
        UniqueConstraint("form_id", "order", name="uq_fields_form_order"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    form_id = Column(String(36), ForeignKey("forms.id", ondelete="RESTRICT"), nullable=False, index=True)
    label = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False)
    required = Column(Boolean, default=False, nullable=False)
    options = Column(Text)  # JSON array of strings
    order = Column(Integer, nullable=False)
    # Soft link to another form for linkedSubmission fields
    linked_form_id = Column(String(36), ForeignKey("forms.id", ondelete="SET NULL"), nullable=True)

    # Relationships
    form = relationship("Form", back_populates="fields", foreign_keys=[form_id])
    linked_form = relationship("Form", foreign_keys=[linked_form_id])

    @property
    def option_list(self) -> list:
        if not self.options:
            return []
        try:
            parsed = json.loads(self.options)
        except (json.JSONDecodeError, TypeError):
            return []
        return [str(o) for o in parsed] if isinstance(parsed, list) else []


class Response(Base):
    __tablename__ = "responses"
    __table_args__ = (
        Index("ix_responses_form_created", "form_id", "created_at"),
        Index("ix_responses_submitted_by", "submitted_by"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    form_id = Column(String(36), ForeignKey("forms.id", ondelete="RESTRICT"), nullable=False)
    submitted_by = Column(String(255), nullable=False, default=ANONYMOUS_SUBMITTER)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    form = relationship("Form", back_populates="responses")
    fields = relationship("ResponseField", back_populates="response")


class ResponseField(Base):
    __tablename__ = "response_fields"
    __table_args__ = (
        UniqueConstraint("response_id", "field_id", name="uq_response_fields_response_field"),
        Index("ix_response_fields_field", "field_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    response_id = Column(String(36), ForeignKey("responses.id", ondelete="RESTRICT"), nullable=False)
    field_id = Column(String(36), ForeignKey("fields.id", ondelete="RESTRICT"), nullable=False)
    value = Column(Text, nullable=False, default="")
    # Upload metadata for file fields (value holds the relative storage path)
    file_name = Column(String(255))
    file_size = Column(Integer)
    mime_type = Column(String(100))

    # Relationships
    response = relationship("Response", back_populates="fields")
    field = relationship("Field")
