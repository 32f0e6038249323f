"""initial_csi_portal_schema

Organisation master data, users and sessions, surveys and questions,
responses with the takeout workflow, scheduled operations, email log
and audit trail.

Revision ID: a1c3e5f70001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c3e5f70001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    # ── Organisation ─────────────────────────────────────────────────────
    if "business_units" not in existing_tables:
        op.create_table(
            "business_units",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    if "divisions" not in existing_tables:
        op.create_table(
            "divisions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("business_unit_id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["business_unit_id"], ["business_units.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("business_unit_id", "code", name="uq_division_bu_code"),
        )
        op.create_index("ix_divisions_business_unit_id", "divisions", ["business_unit_id"])

    if "departments" not in existing_tables:
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("division_id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["division_id"], ["divisions.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("division_id", "code", name="uq_department_division_code"),
        )
        op.create_index("ix_departments_division_id", "departments", ["division_id"])

    # ── Users & sessions ─────────────────────────────────────────────────
    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=100), nullable=False),
            sa.Column("display_name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False),
            sa.Column("use_ldap", sa.Boolean(), nullable=False),
            sa.Column("password_hash", sa.String(length=256), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("business_unit_id", sa.Integer(), nullable=True),
            sa.Column("division_id", sa.Integer(), nullable=True),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["business_unit_id"], ["business_units.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["division_id"], ["divisions.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username"),
        )
        op.create_index("ix_users_email", "users", ["email"])
        op.create_index("ix_users_department_id", "users", ["department_id"])

    if "sessions" not in existing_tables:
        op.create_table(
            "sessions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("token_hash", sa.String(length=64), nullable=False),
            sa.Column("refresh_token_hash", sa.String(length=64), nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("last_activity", sa.DateTime(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("max_expires_at", sa.DateTime(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("invalidated_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sessions_user_id", "sessions", ["user_id"])
        op.create_index("ix_sessions_token_hash", "sessions", ["token_hash"])
        op.create_index("ix_sessions_refresh_token_hash", "sessions", ["refresh_token_hash"])

    # ── Functions, applications, mappings ────────────────────────────────
    if "functions" not in existing_tables:
        op.create_table(
            "functions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("it_dept_head_user_id", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["it_dept_head_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )
        op.create_index("ix_functions_it_dept_head_user_id", "functions", ["it_dept_head_user_id"])

    if "applications" not in existing_tables:
        op.create_table(
            "applications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    if "function_application_mappings" not in existing_tables:
        op.create_table(
            "function_application_mappings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("function_id", sa.Integer(), nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=False),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["function_id"], ["functions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("function_id", "application_id", name="uq_function_application"),
        )
        op.create_index("ix_function_application_mappings_function_id",
                        "function_application_mappings", ["function_id"])
        op.create_index("ix_function_application_mappings_application_id",
                        "function_application_mappings", ["application_id"])

    if "application_department_mappings" not in existing_tables:
        op.create_table(
            "application_department_mappings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=False),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("application_id", "department_id", name="uq_application_department"),
        )
        op.create_index("ix_application_department_mappings_application_id",
                        "application_department_mappings", ["application_id"])
        op.create_index("ix_application_department_mappings_department_id",
                        "application_department_mappings", ["department_id"])

    # ── Surveys & questions ──────────────────────────────────────────────
    if "surveys" not in existing_tables:
        op.create_table(
            "surveys",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("start_date", sa.DateTime(), nullable=False),
            sa.Column("end_date", sa.DateTime(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Draft"),
            sa.Column("assigned_admin_id", sa.Integer(), nullable=True),
            sa.Column("target_respondents", sa.Integer(), nullable=True),
            sa.Column("target_score", sa.Float(), nullable=True),
            sa.Column("survey_link", sa.String(length=500), nullable=True),
            sa.Column("shortened_link", sa.String(length=500), nullable=True),
            sa.Column("embed_code", sa.Text(), nullable=True),
            sa.Column("duplicate_prevention_enabled", sa.Boolean(), nullable=False,
                      server_default=sa.true()),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["assigned_admin_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["updated_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_survey_status", "surveys", ["status"])

    if "survey_admin_assignments" not in existing_tables:
        op.create_table(
            "survey_admin_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("survey_id", sa.Integer(), nullable=False),
            sa.Column("admin_user_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["survey_id"], ["surveys.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["admin_user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("survey_id", "admin_user_id", name="uq_survey_admin"),
        )
        op.create_index("ix_survey_admin_assignments_survey_id",
                        "survey_admin_assignments", ["survey_id"])
        op.create_index("ix_survey_admin_assignments_admin_user_id",
                        "survey_admin_assignments", ["admin_user_id"])

    if "survey_configurations" not in existing_tables:
        op.create_table(
            "survey_configurations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("survey_id", sa.Integer(), nullable=False),
            sa.Column("hero_title", sa.String(length=500), nullable=True),
            sa.Column("hero_subtitle", sa.String(length=500), nullable=True),
            sa.Column("hero_image_url", sa.String(length=500), nullable=True),
            sa.Column("logo_url", sa.String(length=500), nullable=True),
            sa.Column("background_image_url", sa.String(length=500), nullable=True),
            sa.Column("background_color", sa.String(length=7), nullable=True),
            sa.Column("primary_color", sa.String(length=7), nullable=True),
            sa.Column("secondary_color", sa.String(length=7), nullable=True),
            sa.Column("font_family", sa.String(length=100), nullable=True),
            sa.Column("button_style", sa.String(length=50), nullable=True),
            sa.Column("show_progress_bar", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("show_page_numbers", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("multi_page", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["survey_id"], ["surveys.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("survey_id"),
        )

    if "questions" not in existing_tables:
        op.create_table(
            "questions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("survey_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=30), nullable=False),
            sa.Column("prompt_text", sa.Text(), nullable=True),
            sa.Column("subtitle", sa.String(length=500), nullable=True),
            sa.Column("image_url", sa.String(length=500), nullable=True),
            sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("page_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("layout_orientation", sa.String(length=20), nullable=False,
                      server_default="vertical"),
            sa.Column("options", sa.JSON(), nullable=True),
            sa.Column("comment_required_below_rating", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["survey_id"], ["surveys.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_questions_survey_id", "questions", ["survey_id"])
        op.create_index("idx_question_survey_order", "questions", ["survey_id", "display_order"])

    # ── Responses & takeout workflow ─────────────────────────────────────
    if "responses" not in existing_tables:
        op.create_table(
            "responses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("survey_id", sa.Integer(), nullable=False),
            sa.Column("respondent_email", sa.String(length=255), nullable=False),
            sa.Column("respondent_name", sa.String(length=200), nullable=True),
            sa.Column("business_unit_id", sa.Integer(), nullable=False),
            sa.Column("division_id", sa.Integer(), nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=False),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("submitted_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["survey_id"], ["surveys.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["business_unit_id"], ["business_units.id"]),
            sa.ForeignKeyConstraint(["division_id"], ["divisions.id"]),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
            sa.ForeignKeyConstraint(["application_id"], ["applications.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_responses_survey_id", "responses", ["survey_id"])
        op.create_index("ix_responses_department_id", "responses", ["department_id"])
        op.create_index("ix_responses_application_id", "responses", ["application_id"])
        op.create_index("idx_response_survey_email_app", "responses",
                        ["survey_id", "respondent_email", "application_id"])

    if "question_responses" not in existing_tables:
        op.create_table(
            "question_responses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("response_id", sa.Integer(), nullable=False),
            sa.Column("question_id", sa.Integer(), nullable=False),
            sa.Column("text_value", sa.Text(), nullable=True),
            sa.Column("numeric_value", sa.Float(), nullable=True),
            sa.Column("date_value", sa.Date(), nullable=True),
            sa.Column("matrix_values", sa.JSON(), nullable=True),
            sa.Column("comment_value", sa.Text(), nullable=True),
            sa.Column("takeout_status", sa.String(length=20), nullable=False, server_default="Active"),
            sa.Column("takeout_reason", sa.Text(), nullable=True),
            sa.Column("proposed_by", sa.Integer(), nullable=True),
            sa.Column("proposed_at", sa.DateTime(), nullable=True),
            sa.Column("reviewed_by", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("is_best_comment", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["response_id"], ["responses.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["proposed_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["reviewed_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("response_id", "question_id", name="uq_response_question"),
        )
        op.create_index("ix_question_responses_response_id", "question_responses", ["response_id"])
        op.create_index("ix_question_responses_question_id", "question_responses", ["question_id"])
        op.create_index("idx_qr_takeout_status", "question_responses", ["takeout_status"])

    if "approval_history" not in existing_tables:
        op.create_table(
            "approval_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("question_response_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=20), nullable=False),
            sa.Column("performed_by", sa.Integer(), nullable=True),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("previous_status", sa.String(length=20), nullable=True),
            sa.Column("new_status", sa.String(length=20), nullable=False),
            sa.Column("performed_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["question_response_id"], ["question_responses.id"],
                                    ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["performed_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_history_question_response_id",
                        "approval_history", ["question_response_id"])

    if "best_comment_feedback" not in existing_tables:
        op.create_table(
            "best_comment_feedback",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("question_response_id", sa.Integer(), nullable=False),
            sa.Column("it_lead_user_id", sa.Integer(), nullable=False),
            sa.Column("feedback_text", sa.Text(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["question_response_id"], ["question_responses.id"],
                                    ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["it_lead_user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("question_response_id", "it_lead_user_id",
                                name="uq_best_comment_feedback"),
        )

    # ── Scheduling, email, audit ─────────────────────────────────────────
    if "scheduled_operations" not in existing_tables:
        op.create_table(
            "scheduled_operations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("survey_id", sa.Integer(), nullable=False),
            sa.Column("operation_type", sa.String(length=20), nullable=False),
            sa.Column("frequency", sa.String(length=20), nullable=False, server_default="once"),
            sa.Column("scheduled_date", sa.DateTime(), nullable=False),
            sa.Column("scheduled_time", sa.String(length=5), nullable=True, comment="HH:MM"),
            sa.Column("day_of_week", sa.Integer(), nullable=True,
                      comment="0 = Sunday … 6 = Saturday"),
            sa.Column("email_template", sa.Text(), nullable=False),
            sa.Column("embed_cover", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("target_criteria", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
            sa.Column("next_execution_at", sa.DateTime(), nullable=True),
            sa.Column("last_executed_at", sa.DateTime(), nullable=True),
            sa.Column("execution_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["survey_id"], ["surveys.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_scheduled_operations_survey_id", "scheduled_operations", ["survey_id"])
        op.create_index("idx_schedop_due", "scheduled_operations", ["status", "next_execution_at"])

    if "email_logs" not in existing_tables:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("survey_id", sa.Integer(), nullable=True),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("recipient_name", sa.String(length=200), nullable=True),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("email_type", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["survey_id"], ["surveys.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_email_logs_survey_id", "email_logs", ["survey_id"])
        op.create_index("idx_email_recent", "email_logs",
                        ["recipient_email", "survey_id", "email_type", "sent_at"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("username", sa.String(length=100), nullable=False, server_default="anonymous"),
            sa.Column("action", sa.String(length=20), nullable=False),
            sa.Column("entity_type", sa.String(length=50), nullable=True),
            sa.Column("entity_id", sa.String(length=64), nullable=True),
            sa.Column("old_values", sa.JSON(), nullable=True),
            sa.Column("new_values", sa.JSON(), nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("timestamp", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_user", "audit_logs", ["user_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs", "email_logs", "scheduled_operations", "best_comment_feedback",
        "approval_history", "question_responses", "responses", "questions",
        "survey_configurations", "survey_admin_assignments", "surveys",
        "application_department_mappings", "function_application_mappings",
        "applications", "functions", "sessions", "users", "departments",
        "divisions", "business_units",
    ):
        op.drop_table(table)
