"""Create job_history table"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0005_job_history"
down_revision = "0004_api_tokens"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "job_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("job_id", sa.String(length=255), nullable=False),
        sa.Column("queue_name", sa.String(length=100), nullable=False),
        sa.Column("job_name", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("output", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
        ),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_job_history_job_id", "job_history", ["job_id"])
    op.create_index("ix_job_history_queue_name", "job_history", ["queue_name"])
    op.create_index("ix_job_history_status", "job_history", ["status"])
    op.create_index("ix_job_history_created_at", "job_history", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_job_history_created_at", table_name="job_history")
    op.drop_index("ix_job_history_status", table_name="job_history")
    op.drop_index("ix_job_history_queue_name", table_name="job_history")
    op.drop_index("ix_job_history_job_id", table_name="job_history")
    op.drop_table("job_history")
