"""Initial schema: conversations, tasks, AI responses, consensus, memory, usage, health, change history.

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    bind = op.get_bind()
    from orchestrator.models import Base

    # checkfirst keeps this safe on databases created by `orchestrator migrate`
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    bind = op.get_bind()
    from orchestrator.models import Base

    Base.metadata.drop_all(bind=bind)
