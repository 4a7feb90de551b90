"""email_messages.scrub_on_send

Revision ID: c41d8b7e5a92
Revises: a7c3e91f2b10
Create Date: 2026-10-19 10:04:17.220391

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c41d8b7e5a92'
down_revision: Union[str, Sequence[str], None] = 'a7c3e91f2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _columns() -> set[str]:
    return {c["name"] for c in sa.inspect(op.get_bind()).get_columns("email_messages")}


def upgrade() -> None:
    """Upgrade schema."""
    # databases created from the current baseline already have the column
    if "scrub_on_send" not in _columns():
        with op.batch_alter_table("email_messages") as batch_op:
            batch_op.add_column(
                sa.Column("scrub_on_send", sa.Boolean(), nullable=False, server_default=sa.false())
            )


def downgrade() -> None:
    """Downgrade schema."""
    if "scrub_on_send" in _columns():
        with op.batch_alter_table("email_messages") as batch_op:
            batch_op.drop_column("scrub_on_send")
