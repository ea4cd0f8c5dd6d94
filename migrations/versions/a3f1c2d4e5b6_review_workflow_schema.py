"""review workflow schema

Revision ID: a3f1c2d4e5b6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a3f1c2d4e5b6"
down_revision = None
branch_labels = None
depends_on = None


PROGRAM = sa.Enum("ZONING_CLEARANCE", "HOUSING_ASSISTANCE", name="program")
APPLICATION_STATUS = sa.Enum(
    "PENDING",
    "INITIAL_REVIEW",
    "TECHNICAL_REVIEW",
    "AWAITING_APPROVAL",
    "APPROVED",
    "REJECTED",
    "REQUIRES_CHANGES",
    "WITHDRAWN",
    name="application_status",
)
PAYMENT_STATUS = sa.Enum("PENDING", "CONFIRMED", name="payment_status")
REVIEW_STAGE = sa.Enum("INITIAL_REVIEW", "TECHNICAL_REVIEW", name="review_stage")
VERIFICATION_STATUS = sa.Enum("PENDING", "APPROVED", "REJECTED", name="verification_status")
HISTORY_ACTION = sa.Enum(
    "CREATED",
    "PAYMENT_CONFIRMED",
    "PAYMENT_UNCONFIRMED",
    "STATUS_CHANGED",
    "DOCUMENT_RECORDED",
    "DOCUMENT_VERIFIED",
    "DOCUMENT_REJECTED",
    "DOCUMENT_REUPLOADED",
    "STAFF_ASSIGNED",
    name="history_action",
)
CONFIG_DATA_TYPE = sa.Enum("NUMBER", "BOOLEAN", "STRING", "JSON", name="config_data_type")


def upgrade():
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=30), nullable=False, server_default="citizen"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "application",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_number", sa.String(length=20), nullable=False),
        sa.Column("program", PROGRAM, nullable=False),
        sa.Column("status", APPLICATION_STATUS, nullable=False),
        sa.Column("payment_status", PAYMENT_STATUS, nullable=False),
        sa.Column("applicant_id", sa.Integer(), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("contact_number", sa.String(length=30), nullable=False, server_default=""),
        sa.Column("address", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("project_type", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("project_description", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("project_location", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("total_lot_area_sqm", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("total_floor_area_sqm", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("birthdate", sa.Date(), nullable=True),
        sa.Column("household_size", sa.Integer(), nullable=True),
        sa.Column("years_at_address", sa.Integer(), nullable=True),
        sa.Column("monthly_income", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("total_household_income", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("housing_type", sa.String(length=30), nullable=False, server_default=""),
        sa.Column("rooms", sa.Integer(), nullable=True),
        sa.Column("floor_area", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("program_type", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("requested_units", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_pwd", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_solo_parent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_ofw", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("base_fee", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
        sa.Column("processing_fee", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
        sa.Column("total_fee", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("payment_confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("initial_review_started_at", sa.DateTime(), nullable=True),
        sa.Column("forwarded_to_technical_at", sa.DateTime(), nullable=True),
        sa.Column("returned_from_technical_at", sa.DateTime(), nullable=True),
        sa.Column("changes_requested_at", sa.DateTime(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.String(length=500), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["applicant_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("application_number"),
    )
    op.create_index("ix_application_program_status", "application", ["program", "status"], unique=False)
    op.create_index("ix_application_applicant", "application", ["applicant_id"], unique=False)

    op.create_table(
        "document_record",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(length=60), nullable=False),
        sa.Column("category", REVIEW_STAGE, nullable=False),
        sa.Column("verification_status", VERIFICATION_STATUS, nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=500), nullable=False),
        sa.Column("file_sha256", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(length=120), nullable=True),
        sa.Column("uploaded_by_id", sa.Integer(), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
        sa.Column("reviewed_by_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("review_remarks", sa.String(length=500), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["application.id"]),
        sa.ForeignKeyConstraint(["uploaded_by_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["reviewed_by_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("application_id", "document_type", name="uq_document_application_type"),
    )
    with op.batch_alter_table("document_record", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_document_record_application_id"), ["application_id"], unique=False)
    op.create_index(
        "ix_document_application_category_status",
        "document_record",
        ["application_id", "category", "verification_status"],
        unique=False,
    )

    op.create_table(
        "review_assignment",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("stage", REVIEW_STAGE, nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["application.id"]),
        sa.ForeignKeyConstraint(["staff_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("application_id", "stage", name="uq_assignment_application_stage"),
    )
    with op.batch_alter_table("review_assignment", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_review_assignment_application_id"), ["application_id"], unique=False)

    op.create_table(
        "history_entry",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("action", HISTORY_ACTION, nullable=False),
        sa.Column("old_status", sa.String(length=30), nullable=True),
        sa.Column("new_status", sa.String(length=30), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("previous_hash", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("entry_hash", sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(["actor_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["application_id"], ["application.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("history_entry", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_history_entry_actor_id"), ["actor_id"], unique=False)
    op.create_index(
        "ix_history_application_created",
        "history_entry",
        ["application_id", "created_at", "id"],
        unique=False,
    )
    op.create_index("ix_history_action", "history_entry", ["action"], unique=False)

    op.create_table(
        "config_value",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("config_key", sa.String(length=80), nullable=False),
        sa.Column("config_value", sa.Text(), nullable=False, server_default=""),
        sa.Column("data_type", CONFIG_DATA_TYPE, nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("config_key"),
    )


def downgrade():
    op.drop_table("config_value")
    op.drop_index("ix_history_action", table_name="history_entry")
    op.drop_index("ix_history_application_created", table_name="history_entry")
    with op.batch_alter_table("history_entry", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_history_entry_actor_id"))
    op.drop_table("history_entry")
    with op.batch_alter_table("review_assignment", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_review_assignment_application_id"))
    op.drop_table("review_assignment")
    op.drop_index("ix_document_application_category_status", table_name="document_record")
    with op.batch_alter_table("document_record", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_document_record_application_id"))
    op.drop_table("document_record")
    op.drop_index("ix_application_applicant", table_name="application")
    op.drop_index("ix_application_program_status", table_name="application")
    op.drop_table("application")
    op.drop_table("user_account")

    bind = op.get_bind()
    for enum_type in (
        CONFIG_DATA_TYPE,
        HISTORY_ACTION,
        VERIFICATION_STATUS,
        REVIEW_STAGE,
        PAYMENT_STATUS,
        APPLICATION_STATUS,
        PROGRAM,
    ):
        enum_type.drop(bind, checkfirst=True)
