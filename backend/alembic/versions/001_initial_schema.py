"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _soft_delete():
    return [
        sa.Column("is_deleted", sa.Boolean(), server_default="0", nullable=False, index=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # Staff accounts
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(50), unique=True, nullable=False, index=True),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "role",
            sa.Enum("ADMIN", "MANAGER", "CASHIER", "WAITER", "KITCHEN", name="userrole"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(30), unique=True, nullable=False, index=True),
        sa.Column("email", sa.String(255), nullable=True),
        *_timestamps(),
        *_soft_delete(),
    )

    # Menu
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        *_soft_delete(),
    )

    op.create_table(
        "menu_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, index=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True, index=True),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("image_public_id", sa.String(300), nullable=True),
        *_timestamps(),
    )

    # Tables and dine-in sessions
    op.create_table(
        "tables",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("number", sa.Integer(), unique=True, nullable=False, index=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("AVAILABLE", "OCCUPIED", "RESERVED", "OUT_OF_SERVICE", name="tablestatus"),
            nullable=False,
        ),
        sa.Column("location", sa.String(100), nullable=True),
        sa.Column("qr_code_key", sa.String(64), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "table_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("tables.id"), nullable=False, index=True),
        sa.Column("secret_hash", sa.String(64), nullable=False),
        sa.Column("customer_count", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.Enum("OPEN", "CLOSED", name="sessionstatus"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
    )
    # At most one OPEN session per table
    op.create_index(
        "uq_table_sessions_open_table",
        "table_sessions",
        ["table_id"],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    # Orders
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_type", sa.Enum("DINE_IN", "TAKEAWAY", name="ordertype"), nullable=False),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("table_sessions.id"), nullable=True, index=True),
        sa.Column("customer_name", sa.String(200), nullable=True),
        sa.Column("customer_phone", sa.String(30), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "CONFIRMED", "PREPARING", "READY", "SERVED", "COMPLETED", "CANCELLED",
                name="orderstatus",
            ),
            nullable=False,
            index=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("confirmed_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id"), nullable=False),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("PENDING", "PREPARING", "READY", "SERVED", "CANCELLED", name="orderitemstatus"),
            nullable=False,
            index=True,
        ),
        sa.Column("rejection_reason", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("preparing_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ready_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("served_at", sa.DateTime(timezone=True), nullable=True),
    )

    # Payments and the bank transfer log
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("table_sessions.id"), nullable=True, index=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True, index=True),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax", sa.Numeric(10, 2), nullable=False),
        sa.Column("discount", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("method", sa.Enum("CASH", "CARD", "BANKING", name="paymentmethod"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "PAID", "FAILED", "REFUNDED", name="paymentstatus"),
            nullable=False,
            index=True,
        ),
        sa.Column("transaction_id", sa.String(12), unique=True, nullable=False, index=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("refund_reason", sa.String(500), nullable=True),
        sa.Column("failure_reason", sa.String(500), nullable=True),
        sa.Column("processed_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "bank_transfers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.BigInteger(), unique=True, nullable=False, index=True),
        sa.Column("gateway", sa.String(100), nullable=False),
        sa.Column("transaction_date", sa.String(50), nullable=False),
        sa.Column("account_number", sa.String(50), nullable=True),
        sa.Column("code", sa.String(100), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("transfer_type", sa.String(10), nullable=False),
        sa.Column("transfer_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("accumulated", sa.Numeric(15, 2), nullable=True),
        sa.Column("sub_account", sa.String(50), nullable=True),
        sa.Column("reference_code", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("outcome", sa.Enum("MATCHED", "REJECTED", "IGNORED", name="transferoutcome"), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
    )

    # Reservations
    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False, index=True),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("tables.id"), nullable=False, index=True),
        sa.Column("party_size", sa.Integer(), nullable=False),
        sa.Column("reservation_time", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("PENDING", "CONFIRMED", "CANCELLED", "COMPLETED", "NO_SHOW", name="reservationstatus"),
            nullable=False,
            index=True,
        ),
        *_timestamps(),
    )

    # Notifications and guest requests
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column(
            "type",
            sa.Enum(
                "RESERVATION_NEW", "RESERVATION_CONFIRMED", "RESERVATION_CANCELLED",
                "ORDER_NEW", "ORDER_CONFIRMED", "ORDER_READY", "ORDER_ITEM_READY",
                "PAYMENT_SUCCESS", "PAYMENT_FAILED", "CUSTOMER_REQUEST",
                "TABLE_SESSION_STARTED", "SYSTEM_ALERT",
                name="notificationtype",
            ),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, index=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "staff_actions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("table_sessions.id"), nullable=False, index=True),
        sa.Column(
            "action_type",
            sa.Enum("CALL_WAITER", "REQUEST_BILL", "REQUEST_WATER", "OTHER", name="actiontype"),
            nullable=False,
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("PENDING", "IN_PROGRESS", "COMPLETED", name="actionstatus"),
            nullable=False,
            index=True,
        ),
        sa.Column("handled_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("staff_actions")
    op.drop_table("notifications")
    op.drop_table("reservations")
    op.drop_table("bank_transfers")
    op.drop_table("payments")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_index("uq_table_sessions_open_table", table_name="table_sessions")
    op.drop_table("table_sessions")
    op.drop_table("tables")
    op.drop_table("menu_items")
    op.drop_table("categories")
    op.drop_table("customers")
    op.drop_table("users")

    for enum_name in (
        "actionstatus", "actiontype", "notificationtype", "reservationstatus", "transferoutcome",
        "paymentstatus", "paymentmethod", "orderitemstatus", "orderstatus", "ordertype",
        "sessionstatus", "tablestatus", "userrole",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
