"""
Shipments and receipts, email log kinds, one active temp password per clerk.

Revision ID: b7c4e2a91d03
Revises: a1b2c3d4e5f6
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "b7c4e2a91d03"
down_revision: Union[str, Sequence[str], None] = "a1b2c3d4e5f6"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


NOTIFICATION_KINDS = ("STOCK_ALERT", "EXPIRY_ALERT", "TEMP_PASSWORD", "PASSWORD_RESET", "TRANSFER_UPDATE", "OTHER")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "shipments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("destination", sa.String(length=255), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING",
                "PROCESSING",
                "SHIPPED",
                "DELIVERED",
                "RETURNED",
                "CANCELLED",
                name="shipment_status_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("tracking_number", sa.String(length=128), nullable=True),
        sa.Column("carrier", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("return_quantity", sa.Integer(), nullable=True),
        sa.Column("return_reason", sa.String(length=255), nullable=True),
        sa.Column("return_date", sa.Date(), nullable=True),
        sa.Column("created_by_id", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventories.id"], ondelete="CASCADE"),
        sa.CheckConstraint("quantity > 0", name="ck_shipments_quantity_positive"),
        sa.CheckConstraint(
            "return_quantity IS NULL OR (return_quantity > 0 AND return_quantity <= quantity)",
            name="ck_shipments_return_quantity_range",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_shipments_id", "shipments", ["id"])
    op.create_index("ix_shipments_inventory_id", "shipments", ["inventory_id"])
    op.create_index("ix_shipments_inventory_status", "shipments", ["inventory_id", "status"])
    op.create_index("ix_shipments_scheduled_date", "shipments", ["scheduled_date"])

    op.create_table(
        "receipts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=255), nullable=False),
        sa.Column("receipt_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "EXPECTED", "PARTIAL", "COMPLETED", "REJECTED", "DELAYED", name="receipt_status_enum", native_enum=False
            ),
            nullable=False,
        ),
        sa.Column("batch_number", sa.String(length=64), nullable=True),
        sa.Column("purchase_order", sa.String(length=64), nullable=True),
        sa.Column("cost_per_unit", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventories.id"], ondelete="CASCADE"),
        sa.CheckConstraint("quantity > 0", name="ck_receipts_quantity_positive"),
        sa.CheckConstraint("cost_per_unit IS NULL OR cost_per_unit >= 0", name="ck_receipts_cost_nonneg"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_receipts_id", "receipts", ["id"])
    op.create_index("ix_receipts_inventory_id", "receipts", ["inventory_id"])
    op.create_index("ix_receipts_inventory_status", "receipts", ["inventory_id", "status"])
    op.create_index("ix_receipts_receipt_date", "receipts", ["receipt_date"])
    op.create_index("ix_receipts_source", "receipts", ["source"])

    op.drop_index("ix_email_logs_status", table_name="email_logs")
    op.drop_index("ix_email_logs_template", table_name="email_logs")
    with op.batch_alter_table("email_logs") as batch:
        batch.add_column(sa.Column("transfer_id", sa.Integer(), nullable=True))
        batch.add_column(
            sa.Column(
                "kind",
                sa.Enum(*NOTIFICATION_KINDS, name="notification_kind_enum", native_enum=False),
                nullable=False,
                server_default="OTHER",
            )
        )
        batch.create_foreign_key(
            "fk_email_logs_transfer_id",
            "inter_store_transfers",
            ["transfer_id"],
            ["id"],
            ondelete="SET NULL",
        )
    # Backfill kinds for rows written before the column existed.
    for kind in NOTIFICATION_KINDS[:-1]:
        op.execute(
            sa.text("UPDATE email_logs SET kind = :kind WHERE upper(template_key) = :kind").bindparams(kind=kind)
        )
    op.create_index("ix_email_logs_kind_status", "email_logs", ["kind", "status"])
    op.create_index("ix_email_logs_transfer", "email_logs", ["transfer_id"])

    # Keep only the newest active temp password per clerk before enforcing uniqueness.
    op.execute(
        """
        UPDATE temp_passwords SET is_active = false
        WHERE is_active AND id NOT IN (
            SELECT id FROM (
                SELECT id, row_number() OVER (PARTITION BY store_user_id ORDER BY created_at DESC) AS rn
                FROM temp_passwords WHERE is_active
            ) ranked WHERE rn = 1
        )
        """
    )
    with op.batch_alter_table("temp_passwords") as batch:
        batch.create_check_constraint("ck_temp_passwords_expires_after_created", "expires_at > created_at")
    op.create_index(
        "uq_temp_passwords_one_active_per_user",
        "temp_passwords",
        ["store_user_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )


def downgrade() -> None:
    op.drop_index("uq_temp_passwords_one_active_per_user", table_name="temp_passwords")
    with op.batch_alter_table("temp_passwords") as batch:
        batch.drop_constraint("ck_temp_passwords_expires_after_created", type_="check")

    op.drop_index("ix_email_logs_transfer", table_name="email_logs")
    op.drop_index("ix_email_logs_kind_status", table_name="email_logs")
    with op.batch_alter_table("email_logs") as batch:
        batch.drop_constraint("fk_email_logs_transfer_id", type_="foreignkey")
        batch.drop_column("kind")
        batch.drop_column("transfer_id")
    op.create_index("ix_email_logs_status", "email_logs", ["status"])
    op.create_index("ix_email_logs_template", "email_logs", ["template_key"])

    op.drop_table("receipts")
    op.drop_table("shipments")
