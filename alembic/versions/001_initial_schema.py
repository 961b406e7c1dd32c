"""initial schema - requests, participants, invitations, messages, offers, cursor

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates every table from the SQLAlchemy models on the migration connection.
"""
from typing import Sequence, Union

from alembic import op

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from SQLAlchemy models.

    checkfirst=True makes it safe on a database where some tables exist.
    """
    from autorfp.models import Base

    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    """Drop all tables. DESTRUCTIVE — only for dev/test environments."""
    from autorfp.models import Base

    Base.metadata.drop_all(bind=op.get_bind())
