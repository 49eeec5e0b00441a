"""
Initial store portal schema: stores, catalogue, stock, transfers, accounts, audit, email log.

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "stores",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column(
            "store_type",
            sa.Enum("PHARMACY", "WAREHOUSE", "HEADQUARTERS", name="store_type_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("region", sa.String(length=64), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("manager_name", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("slug", sa.String(length=64), nullable=False),
        sa.Column("pending_outgoing_transfers_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_incoming_transfers_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("low_stock_items_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stores_id", "stores", ["id"])
    op.create_index("ix_stores_code", "stores", ["code"], unique=True)
    op.create_index("ix_stores_slug", "stores", ["slug"], unique=True)
    op.create_index("ix_stores_is_active", "stores", ["is_active"])
    op.create_index("ix_stores_type_active", "stores", ["store_type", "is_active"])
    op.create_index("ix_stores_region", "stores", ["region"])

    op.create_table(
        "inventories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=True),
        sa.Column("manufacturer", sa.String(length=128), nullable=True),
        sa.Column("unit", sa.String(length=32), nullable=True),
        sa.Column("price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "ARCHIVED", name="inventory_status_enum", native_enum=False),
            nullable=False,
        ),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="ck_inventories_price_nonneg"),
        sa.CheckConstraint("quantity >= 0", name="ck_inventories_quantity_nonneg"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inventories_id", "inventories", ["id"])
    op.create_index("ix_inventories_name", "inventories", ["name"])
    op.create_index("ix_inventories_sku", "inventories", ["sku"], unique=True)
    op.create_index("ix_inventories_manufacturer", "inventories", ["manufacturer"])
    op.create_index("ix_inventories_status", "inventories", ["status"])
    op.create_index("ix_inventories_status_name", "inventories", ["status", "name"])

    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("lot_code", sa.String(length=64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_on", sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventories.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("inventory_id", "lot_code", name="uq_batches_inventory_lot"),
        sa.CheckConstraint("quantity >= 0", name="ck_batches_quantity_nonneg"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_batches_id", "batches", ["id"])
    op.create_index("ix_batches_inventory_id", "batches", ["inventory_id"])
    op.create_index("ix_batches_expires_on", "batches", ["expires_on"])

    op.create_table(
        "inventory_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column(
            "operation_type",
            sa.Enum("ADD", "REMOVE", "ADJUST", "SHIP", "RECEIVE", name="inventory_operation_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("previous_quantity", sa.Integer(), nullable=False),
        sa.Column("current_quantity", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inventory_logs_id", "inventory_logs", ["id"])
    op.create_index("ix_inventory_logs_inventory_id", "inventory_logs", ["inventory_id"])
    op.create_index("ix_inventory_logs_operation_type", "inventory_logs", ["operation_type"])
    op.create_index("ix_inventory_logs_user_id", "inventory_logs", ["user_id"])
    op.create_index("ix_inventory_logs_created_at", "inventory_logs", ["created_at"])
    op.create_index("ix_inventory_logs_inventory_created", "inventory_logs", ["inventory_id", "created_at"])
    op.create_index("ix_inventory_logs_operation_created", "inventory_logs", ["operation_type", "created_at"])

    op.create_table(
        "store_inventories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.String(length=36), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("safety_stock_level", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("last_updated_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventories.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("store_id", "inventory_id", name="uq_store_inventory_pair"),
        sa.CheckConstraint("quantity >= 0", name="ck_store_inventories_quantity_nonneg"),
        sa.CheckConstraint("reserved_quantity >= 0", name="ck_store_inventories_reserved_nonneg"),
        sa.CheckConstraint("safety_stock_level >= 0", name="ck_store_inventories_safety_nonneg"),
        sa.CheckConstraint("reserved_quantity <= quantity", name="ck_store_inventories_reserved_le_quantity"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_store_inventories_id", "store_inventories", ["id"])
    op.create_index("ix_store_inventories_store_id", "store_inventories", ["store_id"])
    op.create_index("ix_store_inventories_inventory_id", "store_inventories", ["inventory_id"])
    op.create_index("ix_store_inventories_store_qty", "store_inventories", ["store_id", "quantity"])

    op.create_table(
        "admins",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column(
            "role",
            sa.Enum(
                "HEADQUARTERS_ADMIN",
                "STORE_MANAGER",
                "PHARMACIST",
                "STORE_USER",
                name="admin_role_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("store_id", sa.String(length=36), nullable=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lockout_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("last_login_ip", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_admins_email", "admins", ["email"], unique=True)
    op.create_index("ix_admins_role", "admins", ["role"])
    op.create_index("ix_admins_store_id", "admins", ["store_id"])
    op.create_index("ix_admins_is_active", "admins", ["is_active"])
    op.create_index("idx_admins_role_active", "admins", ["role", "is_active"])

    op.create_table(
        "store_users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("store_id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "role",
            sa.Enum("STAFF", "MANAGER", name="store_user_role_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("employee_code", sa.String(length=50), nullable=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("password_changed_at", sa.DateTime(), nullable=True),
        sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("sign_in_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_sign_in_at", sa.DateTime(), nullable=True),
        sa.Column("last_sign_in_at", sa.DateTime(), nullable=True),
        sa.Column("current_sign_in_ip", sa.String(length=64), nullable=True),
        sa.Column("last_sign_in_ip", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("store_id", "email", name="uq_store_users_store_email"),
        sa.UniqueConstraint("store_id", "employee_code", name="uq_store_users_store_employee_code"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_store_users_store_id", "store_users", ["store_id"])
    op.create_index("ix_store_users_email", "store_users", ["email"])
    op.create_index("ix_store_users_is_active", "store_users", ["is_active"])
    op.create_index("idx_store_users_store_role", "store_users", ["store_id", "role"])

    op.create_table(
        "temp_passwords",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("store_user_id", sa.String(length=36), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("generated_by_admin_id", sa.String(length=36), nullable=True),
        sa.Column("usage_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["store_user_id"], ["store_users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["generated_by_admin_id"], ["admins.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "usage_attempts >= 0 AND usage_attempts <= 10",
            name="ck_temp_passwords_usage_attempts_range",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_temp_passwords_store_user_id", "temp_passwords", ["store_user_id"])
    op.create_index("idx_temp_passwords_user_active", "temp_passwords", ["store_user_id", "is_active"])
    op.create_index("idx_temp_passwords_expires", "temp_passwords", ["expires_at"])

    op.create_table(
        "password_reset_tokens",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("admin_id", sa.String(length=36), nullable=False),
        sa.Column("token_hash", sa.String(length=255), nullable=False),
        sa.Column("issued_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("request_ip", sa.String(length=64), nullable=True),
        sa.Column("request_user_agent", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["admin_id"], ["admins.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_password_reset_tokens_admin_id", "password_reset_tokens", ["admin_id"])
    op.create_index("ix_password_reset_tokens_token_hash", "password_reset_tokens", ["token_hash"])
    op.create_index("idx_reset_tokens_admin_expires", "password_reset_tokens", ["admin_id", "expires_at"])

    op.create_table(
        "account_security_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("principal_type", sa.String(length=32), nullable=True),
        sa.Column("principal_id", sa.String(length=36), nullable=True),
        sa.Column("store_id", sa.String(length=36), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_account_security_events_principal_id", "account_security_events", ["principal_id"])
    op.create_index("ix_account_security_events_store_id", "account_security_events", ["store_id"])
    op.create_index(
        "idx_security_events_principal_created",
        "account_security_events",
        ["principal_id", "event_type", "created_at"],
    )

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("scope", sa.String(length=128), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("payload_hash", sa.String(length=64), nullable=False),
        sa.Column("resource_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "inter_store_transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("source_store_id", sa.String(length=36), nullable=False),
        sa.Column("destination_store_id", sa.String(length=36), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING",
                "APPROVED",
                "REJECTED",
                "IN_TRANSIT",
                "COMPLETED",
                "CANCELLED",
                name="transfer_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column(
            "priority",
            sa.Enum("NORMAL", "URGENT", "EMERGENCY", name="transfer_priority_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("requested_delivery_date", sa.Date(), nullable=True),
        sa.Column(
            "requested_by_type",
            sa.Enum("ADMIN", "STORE_USER", name="transfer_requester_type_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("requested_by_id", sa.String(length=36), nullable=False),
        sa.Column("approved_by_id", sa.String(length=36), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("shipped_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["source_store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["destination_store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventories.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approved_by_id"], ["admins.id"], ondelete="SET NULL"),
        sa.CheckConstraint("quantity > 0", name="ck_transfers_quantity_positive"),
        sa.CheckConstraint("source_store_id <> destination_store_id", name="ck_transfers_distinct_stores"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inter_store_transfers_id", "inter_store_transfers", ["id"])
    op.create_index("ix_inter_store_transfers_source_store_id", "inter_store_transfers", ["source_store_id"])
    op.create_index(
        "ix_inter_store_transfers_destination_store_id", "inter_store_transfers", ["destination_store_id"]
    )
    op.create_index("ix_inter_store_transfers_inventory_id", "inter_store_transfers", ["inventory_id"])
    op.create_index("ix_inter_store_transfers_status", "inter_store_transfers", ["status"])
    op.create_index("ix_inter_store_transfers_priority", "inter_store_transfers", ["priority"])
    op.create_index("ix_inter_store_transfers_requested_by_id", "inter_store_transfers", ["requested_by_id"])
    op.create_index("ix_transfers_source_status", "inter_store_transfers", ["source_store_id", "status"])
    op.create_index("ix_transfers_destination_status", "inter_store_transfers", ["destination_store_id", "status"])
    op.create_index("ix_transfers_status_priority", "inter_store_transfers", ["status", "priority"])
    op.create_index("ix_transfers_requested_at", "inter_store_transfers", ["requested_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("store_id", sa.String(length=36), nullable=True),
        sa.Column("auditable_type", sa.String(length=64), nullable=True),
        sa.Column("auditable_id", sa.String(length=64), nullable=True),
        sa.Column("actor_type", sa.String(length=32), nullable=True),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"])
    op.create_index("ix_audit_logs_store_id", "audit_logs", ["store_id"])
    op.create_index("ix_audit_logs_auditable_type", "audit_logs", ["auditable_type"])
    op.create_index("ix_audit_logs_auditable_id", "audit_logs", ["auditable_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_correlation_id", "audit_logs", ["correlation_id"])
    op.create_index("ix_audit_logs_occurred_at", "audit_logs", ["occurred_at"])
    op.create_index("ix_audit_logs_store_auditable", "audit_logs", ["store_id", "auditable_type", "auditable_id"])
    op.create_index("ix_audit_logs_store_action", "audit_logs", ["store_id", "action"])
    op.create_index("ix_audit_logs_store_time", "audit_logs", ["store_id", "occurred_at"])
    op.create_index("ix_audit_logs_time_desc", "audit_logs", [sa.text("occurred_at DESC")])

    op.create_table(
        "email_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("store_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("template_key", sa.String(length=128), nullable=False),
        sa.Column(
            "status",
            sa.Enum("QUEUED", "SENT", "FAILED", "SKIPPED_NO_PROVIDER", name="email_status_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("context_json", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_email_logs_id", "email_logs", ["id"])
    op.create_index("ix_email_logs_store_id", "email_logs", ["store_id"])
    op.create_index("ix_email_logs_created_at", "email_logs", ["created_at"])
    op.create_index("ix_email_logs_correlation_id", "email_logs", ["correlation_id"])
    op.create_index("ix_email_logs_store_created", "email_logs", ["store_id", "created_at"])
    op.create_index("ix_email_logs_status", "email_logs", ["status"])
    op.create_index("ix_email_logs_template", "email_logs", ["template_key"])


def downgrade() -> None:
    for table in (
        "email_logs",
        "audit_logs",
        "inter_store_transfers",
        "idempotency_keys",
        "account_security_events",
        "password_reset_tokens",
        "temp_passwords",
        "store_users",
        "admins",
        "store_inventories",
        "inventory_logs",
        "batches",
        "inventories",
        "stores",
    ):
        op.drop_table(table)
