"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2025-04-02

Forms, their ordered fields, responses and per-field response values.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # =========================================
    # FORMS TABLE
    # =========================================
    op.create_table(
        'forms',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('published', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_forms_created_by', 'forms', ['created_by'])
    op.create_index('ix_forms_published', 'forms', ['published'])

    # =========================================
    # FIELDS TABLE
    # =========================================
    op.create_table(
        'fields',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('form_id', sa.String(36), nullable=False),
        sa.Column('label', sa.String(255), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('options', sa.Text(), nullable=True),  # JSON array
        sa.Column('order', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['form_id'], ['forms.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('form_id', 'order', name='uq_fields_form_order'),
    )
    op.create_index('ix_fields_form_id', 'fields', ['form_id'])

    # =========================================
    # RESPONSES TABLE
    # =========================================
    op.create_table(
        'responses',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('form_id', sa.String(36), nullable=False),
        sa.Column('submitted_by', sa.String(255), nullable=False, server_default='anonymous'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['form_id'], ['forms.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_responses_form_created', 'responses', ['form_id', 'created_at'])
    op.create_index('ix_responses_submitted_by', 'responses', ['submitted_by'])

    # =========================================
    # RESPONSE FIELDS TABLE
    # =========================================
    op.create_table(
        'response_fields',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('response_id', sa.String(36), nullable=False),
        sa.Column('field_id', sa.String(36), nullable=False),
        sa.Column('value', sa.Text(), nullable=False, server_default=''),
        sa.Column('file_name', sa.String(255), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('mime_type', sa.String(100), nullable=True),
        sa.ForeignKeyConstraint(['response_id'], ['responses.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['field_id'], ['fields.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('response_id', 'field_id', name='uq_response_fields_response_field'),
    )
    op.create_index('ix_response_fields_field', 'response_fields', ['field_id'])


def downgrade() -> None:
    op.drop_index('ix_response_fields_field', table_name='response_fields')
    op.drop_table('response_fields')
    op.drop_index('ix_responses_submitted_by', table_name='responses')
    op.drop_index('ix_responses_form_created', table_name='responses')
    op.drop_table('responses')
    op.drop_index('ix_fields_form_id', table_name='fields')
    op.drop_table('fields')
    op.drop_index('ix_forms_published', table_name='forms')
    op.drop_index('ix_forms_created_by', table_name='forms')
    op.drop_table('forms')
