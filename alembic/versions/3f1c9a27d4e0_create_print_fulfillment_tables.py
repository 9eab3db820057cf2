"""create print fulfillment tables

Revision ID: 3f1c9a27d4e0
Revises:
Create Date: 2026-10-19 10:12:41.503118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c9a27d4e0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False, server_default=""),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("can_login", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("credits_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_user_email", "user", ["email"])

    op.create_table(
        "book",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("page_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("generation_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_book_user_id", "book", ["user_id"])

    op.create_table(
        "print_order",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("book_id", sa.Integer(), sa.ForeignKey("book.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("shipping_address", sa.JSON(), nullable=False),
        sa.Column("shipping_level", sa.String(), nullable=False),
        sa.Column("total_cost_credits", sa.Integer(), nullable=False),
        sa.Column("total_cost", sa.Numeric(12, 4), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("provider_cost", sa.Numeric(12, 4), nullable=False),
        sa.Column("print_markup_percentage", sa.Numeric(6, 2), nullable=False),
        sa.Column("shipping_markup_percentage", sa.Numeric(6, 2), nullable=False),
        sa.Column("cover_pdf_url", sa.String(), nullable=True),
        sa.Column("interior_pdf_url", sa.String(), nullable=True),
        sa.Column("payment_reference", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="created"),
        sa.Column("provider_job_id", sa.String(), nullable=True),
        sa.Column("provider_status", sa.String(), nullable=True),
        sa.Column("pending_status", sa.String(), nullable=True),
        sa.Column("tracking_info", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("submission_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_print_order_external_id", "print_order", ["external_id"], unique=True)
    op.create_index("ix_print_order_user_id", "print_order", ["user_id"])
    op.create_index("ix_print_order_book_id", "print_order", ["book_id"])
    op.create_index("ix_print_order_status", "print_order", ["status"])
    op.create_index("ix_print_order_provider_job_id", "print_order", ["provider_job_id"], unique=True)
    op.create_index("ix_print_order_payment_reference", "print_order", ["payment_reference"], unique=True)

    op.create_table(
        "credit_transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("print_order_id", sa.Integer(), sa.ForeignKey("print_order.id"), nullable=True),
        sa.Column("book_id", sa.Integer(), sa.ForeignKey("book.id"), nullable=True),
        sa.Column("payment_reference", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("print_order_id", "type", name="uq_credit_txn_order_type"),
    )
    op.create_index("ix_credit_transaction_user_id", "credit_transaction", ["user_id"])
    op.create_index("ix_credit_transaction_type", "credit_transaction", ["type"])
    op.create_index("ix_credit_transaction_print_order_id", "credit_transaction", ["print_order_id"])
    op.create_index(
        "ix_credit_transaction_payment_reference", "credit_transaction", ["payment_reference"], unique=True
    )

    # append-only order timeline
    op.create_table(
        "print_order_event",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("print_order.id"), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False, server_default="system"),
    )
    op.create_index("ix_print_order_event_order_id", "print_order_event", ["order_id"])
    op.create_index("ix_print_order_event_event_type", "print_order_event", ["event_type"])


def downgrade():
    op.drop_index("ix_print_order_event_event_type", table_name="print_order_event")
    op.drop_index("ix_print_order_event_order_id", table_name="print_order_event")
    op.drop_table("print_order_event")

    op.drop_index("ix_credit_transaction_payment_reference", table_name="credit_transaction")
    op.drop_index("ix_credit_transaction_print_order_id", table_name="credit_transaction")
    op.drop_index("ix_credit_transaction_type", table_name="credit_transaction")
    op.drop_index("ix_credit_transaction_user_id", table_name="credit_transaction")
    op.drop_table("credit_transaction")

    for index in (
        "ix_print_order_payment_reference",
        "ix_print_order_provider_job_id",
        "ix_print_order_status",
        "ix_print_order_book_id",
        "ix_print_order_user_id",
        "ix_print_order_external_id",
    ):
        op.drop_index(index, table_name="print_order")
    op.drop_table("print_order")

    op.drop_index("ix_book_user_id", table_name="book")
    op.drop_table("book")

    op.drop_index("ix_user_email", table_name="user")
    op.drop_table("user")
