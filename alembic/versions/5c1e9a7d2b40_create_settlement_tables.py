"""Create users, invoices, payments and notifications.

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "5c1e9a7d2b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    invoice_status = postgresql.ENUM(
        "pending", "overdue", "paid", "canceled", name="invoicestatus"
    )
    payment_method = postgresql.ENUM(
        "paypal", "visa", "mastercard", "other", name="paymentmethod"
    )
    notification_type = postgresql.ENUM(
        "invoice_issued",
        "payment_due",
        "payment_overdue",
        "payment_received",
        "invoice_canceled",
        name="notificationtype",
    )
    invoice_status.create(op.get_bind(), checkfirst=True)
    payment_method.create(op.get_bind(), checkfirst=True)
    notification_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("surnames", sa.String(160)),
        sa.Column("email_notifications", sa.Boolean(), server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("invoice_number", sa.String(80), nullable=False),
        sa.Column(
            "issuer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column(
            "debtor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column("subject", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "status",
            postgresql.ENUM(name="invoicestatus", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("due_at", sa.DateTime(timezone=True)),
        sa.Column("invoice_pdf_url", sa.String(500)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        sa.CheckConstraint("issuer_id <> debtor_id", name="ck_invoices_issuer_not_debtor"),
    )
    op.create_index("ix_invoices_status_due_at", "invoices", ["status", "due_at"])

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "invoice_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("invoices.id"),
            nullable=False,
        ),
        sa.Column("paid_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column(
            "method",
            postgresql.ENUM(name="paymentmethod", create_type=False),
            nullable=False,
        ),
        sa.Column("external_reference", sa.String(255)),
        sa.Column("receipt_url", sa.String(500)),
        sa.Column("subject", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("invoice_id", name="uq_payments_invoice_id"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column(
            "invoice_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("invoices.id"),
            nullable=False,
        ),
        sa.Column(
            "type",
            postgresql.ENUM(name="notificationtype", create_type=False),
            nullable=False,
        ),
        sa.Column("read", sa.Boolean(), server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_notifications_invoice_type", "notifications", ["invoice_id", "type"]
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_invoice_type", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("payments")
    op.drop_index("ix_invoices_status_due_at", table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("users")
    postgresql.ENUM(name="notificationtype").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="paymentmethod").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="invoicestatus").drop(op.get_bind(), checkfirst=True)
