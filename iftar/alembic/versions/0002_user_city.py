"""Add user home city and the event host-mode flag."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_user_city"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("users") as batch_op:
        batch_op.add_column(
            sa.Column(
                "city",
                sa.String(length=32),
                nullable=True,
                server_default="astana",
            )
        )
        batch_op.add_column(sa.Column("city_lat", sa.Float(), nullable=True))
        batch_op.add_column(sa.Column("city_lng", sa.Float(), nullable=True))

    with op.batch_alter_table("events") as batch_op:
        batch_op.add_column(
            sa.Column(
                "is_host_mode",
                sa.Boolean(),
                nullable=False,
                server_default=sa.true(),
            )
        )


def downgrade() -> None:
    with op.batch_alter_table("events") as batch_op:
        batch_op.drop_column("is_host_mode")
    with op.batch_alter_table("users") as batch_op:
        batch_op.drop_column("city_lng")
        batch_op.drop_column("city_lat")
        batch_op.drop_column("city")
