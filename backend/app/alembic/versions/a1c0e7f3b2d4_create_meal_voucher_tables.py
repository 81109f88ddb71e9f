"""create meal voucher tables

Revision ID: a1c0e7f3b2d4
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "a1c0e7f3b2d4"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("phone", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("kitchen_id", sa.BigInteger(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_users_phone", "users", ["phone"], unique=True)
    op.create_index("ix_users_kitchen_id", "users", ["kitchen_id"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan_name", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_vouchers_issued", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vouchers_used", sa.Integer(), nullable=False, server_default="0"),
        _ts("voucher_expiry_date"),
        sa.Column("auto_ordering_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_paused", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("paused_until", nullable=True),
        sa.Column("skipped_slots", sa.JSON(), nullable=False),
        sa.Column("default_meal_type", sa.String(length=8), nullable=False),
        sa.Column("default_kitchen_id", sa.BigInteger(), nullable=True),
        sa.Column("default_address_id", sa.BigInteger(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        # 计数永远不能超过发券总数
        sa.CheckConstraint(
            "vouchers_used >= 0 AND vouchers_used <= total_vouchers_issued",
            name="ck_subscriptions_vouchers_used",
        ),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])

    op.create_table(
        "vouchers",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column(
            "subscription_id",
            sa.BigInteger(),
            sa.ForeignKey("subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("meal_type", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        _ts("expiry_date"),
        _ts("redeemed_at", nullable=True),
        sa.Column("redeemed_order_id", sa.BigInteger(), nullable=True),
        sa.Column("redeemed_kitchen_id", sa.BigInteger(), nullable=True),
        sa.Column("redeemed_meal_window", sa.String(length=8), nullable=True),
        _ts("restored_at", nullable=True),
        sa.Column("restoration_reason", sa.String(length=32), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_vouchers_code", "vouchers", ["code"], unique=True)
    op.create_index("ix_vouchers_subscription_id", "vouchers", ["subscription_id"])
    op.create_index("ix_vouchers_user_id", "vouchers", ["user_id"])
    op.create_index("ix_vouchers_redeemed_order_id", "vouchers", ["redeemed_order_id"])
    op.create_index(
        "ix_vouchers_user_status_expiry", "vouchers", ["user_id", "status", "expiry_date"]
    )

    op.create_table(
        "zones",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("pincode", sa.String(length=10), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("city", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("ordering_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _ts("created_at"),
    )
    op.create_index("ix_zones_pincode", "zones", ["pincode"], unique=True)

    op.create_table(
        "customer_addresses",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("label", sa.String(length=32), nullable=True),
        sa.Column("address_line", sa.String(length=255), nullable=False),
        sa.Column("locality", sa.String(length=128), nullable=True),
        sa.Column("city", sa.String(length=64), nullable=True),
        sa.Column("pincode", sa.String(length=10), nullable=False),
        sa.Column("zone_id", sa.BigInteger(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("created_at"),
    )
    op.create_index("ix_customer_addresses_user_id", "customer_addresses", ["user_id"])

    op.create_table(
        "kitchens",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("is_accepting_orders", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("lunch_start_time", sa.String(length=5), nullable=True),
        sa.Column("lunch_end_time", sa.String(length=5), nullable=True),
        sa.Column("dinner_start_time", sa.String(length=5), nullable=True),
        sa.Column("dinner_end_time", sa.String(length=5), nullable=True),
        _ts("created_at"),
    )

    op.create_table(
        "kitchen_zones",
        sa.Column(
            "kitchen_id",
            sa.BigInteger(),
            sa.ForeignKey("kitchens.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "zone_id", sa.BigInteger(), sa.ForeignKey("zones.id", ondelete="CASCADE"), primary_key=True
        ),
    )

    op.create_table(
        "menu_items",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column(
            "kitchen_id", sa.BigInteger(), sa.ForeignKey("kitchens.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("menu_type", sa.String(length=16), nullable=False),
        sa.Column("meal_window", sa.String(length=8), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("discounted_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _ts("created_at"),
    )
    op.create_index("ix_menu_items_kitchen_id", "menu_items", ["kitchen_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("order_number", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kitchen_id", sa.BigInteger(), sa.ForeignKey("kitchens.id"), nullable=False),
        sa.Column("zone_id", sa.BigInteger(), nullable=True),
        sa.Column("subscription_id", sa.BigInteger(), nullable=True),
        sa.Column("delivery_address_id", sa.BigInteger(), nullable=True),
        sa.Column("delivery_address", sa.JSON(), nullable=False),
        sa.Column("menu_type", sa.String(length=16), nullable=False),
        sa.Column("meal_window", sa.String(length=8), nullable=True),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("voucher_ids", sa.JSON(), nullable=False),
        sa.Column("voucher_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("main_courses_covered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("grand_total", sa.Numeric(10, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_status", sa.String(length=24), nullable=False),
        sa.Column("payment_method", sa.String(length=16), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("placed_at"),
        _ts("accepted_at", nullable=True),
        _ts("rejected_at", nullable=True),
        _ts("cancelled_at", nullable=True),
        _ts("prepared_at", nullable=True),
        _ts("picked_up_at", nullable=True),
        _ts("delivered_at", nullable=True),
        sa.Column("rejection_reason", sa.String(length=255), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=255), nullable=True),
        sa.Column("cancelled_by", sa.String(length=16), nullable=True),
        sa.Column("is_auto_order", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_kitchen_id", "orders", ["kitchen_id"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_status_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("actor", sa.String(length=16), nullable=False),
        sa.Column("actor_id", sa.BigInteger(), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_order_status_events_order_id", "order_status_events", ["order_id"])

    op.create_table(
        "auto_order_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("subscription_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("order_id", sa.BigInteger(), nullable=True),
        sa.Column("order_number", sa.String(length=32), nullable=True),
        sa.Column("meal_window", sa.String(length=8), nullable=False),
        sa.Column("processed_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=8), nullable=False),
        sa.Column("failure_category", sa.String(length=32), nullable=True),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("cron_run_id", sa.String(length=64), nullable=False),
        sa.Column("processing_time_ms", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at"),
    )
    op.create_index("ix_auto_order_logs_subscription_id", "auto_order_logs", ["subscription_id"])
    op.create_index("ix_auto_order_logs_user_id", "auto_order_logs", ["user_id"])
    op.create_index("ix_auto_order_logs_processed_date", "auto_order_logs", ["processed_date"])
    op.create_index("ix_auto_order_logs_cron_run_id", "auto_order_logs", ["cron_run_id"])

    op.create_table(
        "refunds",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("initiated_by", sa.String(length=16), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_refunds_order_id", "refunds", ["order_id"])
    op.create_index("ix_refunds_user_id", "refunds", ["user_id"])


def downgrade() -> None:
    for table in (
        "refunds",
        "auto_order_logs",
        "order_status_events",
        "orders",
        "menu_items",
        "kitchen_zones",
        "kitchens",
        "customer_addresses",
        "zones",
        "vouchers",
        "subscriptions",
        "users",
    ):
        op.drop_table(table)
