"""initial portal schema

Revision ID: a7c3e91f2b10
Revises:
Create Date: 2026-10-18 09:12:41.508113

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = 'a7c3e91f2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    from app.portal.models import Base

    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    # Baseline: every declared table in FK order, skipping ones that already exist.
    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            table.create(bind)


def downgrade() -> None:
    """Downgrade schema."""
    from app.portal.models import Base

    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())
    for table in reversed(Base.metadata.sorted_tables):
        if table.name in existing_tables:
            table.drop(bind)
