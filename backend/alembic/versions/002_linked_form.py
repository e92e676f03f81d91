"""Link fields to another form

Revision ID: 002_linked_form
Revises: 001_initial
Create Date: 2025-05-11

linkedSubmission fields point at the form whose responses they reference.
The link is cleared when that form is deleted.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '002_linked_form'
down_revision: Union[str, None] = '001_initial'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('fields', sa.Column('linked_form_id', sa.String(36), nullable=True))
    op.create_foreign_key(
        'fk_fields_linked_form_id',
        'fields', 'forms',
        ['linked_form_id'], ['id'],
        ondelete='SET NULL',
    )


def downgrade() -> None:
    op.drop_constraint('fk_fields_linked_form_id', 'fields', type_='foreignkey')
    op.drop_column('fields', 'linked_form_id')
