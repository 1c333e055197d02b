from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3c1f9a7d2b10"
down_revision = None
branch_labels = None
depends_on = None


facility_status = sa.Enum("PENDING", "APPROVED", "REJECTED", "SUSPENDED", name="facilitystatus")
booking_status = sa.Enum("PENDING", "CONFIRMED", "CANCELLED", "COMPLETED", name="bookingstatus")
payment_status = sa.Enum("CREATED", "CAPTURED", "FAILED", name="paymentstatus")
refund_status = sa.Enum("PENDING", "COMPLETED", "FAILED", name="refundstatus")


def upgrade():
    # 1️⃣ Venues
    op.create_table(
        "facilities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("status", facility_status, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_facilities_id", "facilities", ["id"])
    op.create_index("ix_facilities_owner_id", "facilities", ["owner_id"])

    op.create_table(
        "courts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("facility_id", sa.Integer(), sa.ForeignKey("facilities.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("sport_type", sa.String(), nullable=True),
        sa.Column("opening_time", sa.Time(), nullable=False),
        sa.Column("closing_time", sa.Time(), nullable=False),
        sa.Column("price_per_hour", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("opening_time < closing_time", name="ck_courts_operating_hours"),
    )
    op.create_index("ix_courts_id", "courts", ["id"])
    op.create_index("ix_courts_facility_id", "courts", ["facility_id"])

    # 2️⃣ Blocked time + bookings
    op.create_table(
        "time_slots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("court_id", sa.Integer(), sa.ForeignKey("courts.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_blocked", sa.Boolean(), nullable=False),
        sa.Column("block_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("court_id", "date", "start_time", name="uq_time_slots_court_date_start"),
        sa.CheckConstraint("start_time < end_time", name="ck_time_slots_window"),
    )
    op.create_index("ix_time_slots_id", "time_slots", ["id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("court_id", sa.Integer(), sa.ForeignKey("courts.id"), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("status", booking_status, nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("cancel_reason", sa.String(), nullable=True),
        sa.CheckConstraint("start_time < end_time", name="ck_bookings_window"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_court_date", "bookings", ["court_id", "booking_date"])
    op.create_index("ix_bookings_status_created", "bookings", ["status", "created_at"])

    # 3️⃣ Exclusion: one row per claimed grid cell
    op.create_table(
        "slot_claims",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("court_id", sa.Integer(), sa.ForeignKey("courts.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("cell_start", sa.Time(), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("time_slot_id", sa.Integer(), sa.ForeignKey("time_slots.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("court_id", "date", "cell_start", name="uq_slot_claims_cell"),
        sa.CheckConstraint(
            "(booking_id IS NULL) <> (time_slot_id IS NULL)",
            name="ck_slot_claims_single_holder",
        ),
    )
    op.create_index("ix_slot_claims_booking_id", "slot_claims", ["booking_id"])
    op.create_index("ix_slot_claims_time_slot_id", "slot_claims", ["time_slot_id"])

    # 4️⃣ Money
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False, unique=True),
        sa.Column("gateway_order_id", sa.String(), nullable=True),
        sa.Column("gateway_payment_id", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("processing_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("gst", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("method", sa.String(), nullable=True),
        sa.Column("status", payment_status, nullable=False),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("review_reason", sa.Text(), nullable=True),
        sa.Column("captured_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("captured_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_payments_id", "payments", ["id"])
    op.create_index("ix_payments_gateway_order_id", "payments", ["gateway_order_id"], unique=True)
    op.create_index("ix_payments_gateway_payment_id", "payments", ["gateway_payment_id"], unique=True)

    op.create_table(
        "refunds",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("gateway_refund_id", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", refund_status, nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_refunds_id", "refunds", ["id"])
    op.create_index("ix_refunds_payment_id", "refunds", ["payment_id"])
    op.create_index("ix_refunds_gateway_refund_id", "refunds", ["gateway_refund_id"], unique=True)

    # 5️⃣ Webhook ledger
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("idempotency_key", sa.String(255), nullable=False, unique=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("gateway_event_id", sa.String(255), nullable=True),
        sa.Column("raw_body", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("outcome", sa.Text(), nullable=True),
        sa.Column("related_entity_type", sa.String(50), nullable=True),
        sa.Column("related_entity_id", sa.Integer(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("received_at", sa.DateTime(), nullable=False),
        sa.Column("last_retry_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_webhook_events_id", "webhook_events", ["id"])
    op.create_index("ix_webhook_events_event_type", "webhook_events", ["event_type"])


def downgrade():
    op.drop_table("webhook_events")
    op.drop_table("refunds")
    op.drop_table("payments")
    op.drop_table("slot_claims")
    op.drop_table("bookings")
    op.drop_table("time_slots")
    op.drop_table("courts")
    op.drop_table("facilities")

    bind = op.get_bind()
    for enum in (refund_status, payment_status, booking_status, facility_status):
        enum.drop(bind, checkfirst=True)
