from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None

SETTLEMENT_PREDICATE = "category = 'Delivery Income' AND affects_balance"

def upgrade() -> None:
    op.create_index(
        "uq_transactions_delivery_income_ref",
        "transactions",
        ["user_id", "reference_id"],
        unique=True,
        postgresql_where=sa.text(SETTLEMENT_PREDICATE),
        sqlite_where=sa.text(SETTLEMENT_PREDICATE),
    )

def downgrade() -> None:
    op.drop_index("uq_transactions_delivery_income_ref", table_name="transactions")
