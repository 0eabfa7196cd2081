"""initial ledger schema

Revision ID: 202610161200
Revises:
Create Date: 2026-10-16 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610161200"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("cash", "bank", "credit", "investment", name="accountkind"),
            nullable=False,
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("icon", sa.String(length=16), nullable=False, server_default=""),
        sa.Column("color", sa.String(length=7)),
        *_timestamps(),
    )

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", name="billstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "is_installment", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("total_installments", sa.Integer()),
        sa.Column("current_installment", sa.Integer()),
        sa.Column("parent_bill_id", sa.Integer(), sa.ForeignKey("bills.id")),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "recurrence_type",
            sa.Enum("weekly", "monthly", "yearly", name="recurrencetype"),
        ),
        sa.Column("recurrence_end_date", sa.Date()),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("paid_account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_bills_amount_positive"),
        sa.CheckConstraint(
            "NOT (is_installment AND is_recurring)",
            name="ck_bills_installment_xor_recurring",
        ),
        sa.CheckConstraint(
            "recurrence_end_date IS NULL OR recurrence_end_date >= due_date",
            name="ck_bills_recurrence_end_not_before_due",
        ),
        sa.CheckConstraint(
            "total_installments IS NULL OR total_installments >= 2",
            name="ck_bills_total_installments_min",
        ),
    )
    op.create_index(
        "ix_bills_user_status_due", "bills", ["user_id", "status", "due_date"]
    )
    op.create_index("ix_bills_parent", "bills", ["parent_bill_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id")),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category", "transactions", ["user_id", "category_id"]
    )
    op.create_index(
        "ix_transactions_user_account", "transactions", ["user_id", "account_id"]
    )


def downgrade():
    op.drop_index("ix_transactions_user_account", table_name="transactions")
    op.drop_index("ix_transactions_user_category", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_bills_parent", table_name="bills")
    op.drop_index("ix_bills_user_status_due", table_name="bills")
    op.drop_table("bills")
    op.drop_table("categories")
    op.drop_table("accounts")
