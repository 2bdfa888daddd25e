"""ledger_and_audit_append_only

Revision ID: 7a2e4d6c8b10
Revises: 3f1c0a9b7d21
Create Date: 2026-10-05 09:40:03.552910

Ledger events and audit entries are history: revoke UPDATE and DELETE so
only INSERT and SELECT remain for the app role.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '7a2e4d6c8b10'
down_revision: Union[str, None] = '3f1c0a9b7d21'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    for table in ("ledger_events", "audit_logs"):
        op.execute(f"REVOKE UPDATE, DELETE ON {table} FROM PUBLIC;")
        op.execute(f"GRANT SELECT, INSERT ON {table} TO PUBLIC;")


def downgrade() -> None:
    for table in ("ledger_events", "audit_logs"):
        op.execute(f"GRANT UPDATE, DELETE ON {table} TO PUBLIC;")
