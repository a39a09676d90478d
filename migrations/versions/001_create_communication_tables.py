"""Create incident communication tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_communication_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUMS = {
    "incidentseverity": ("CRITICAL", "HIGH", "MEDIUM", "LOW"),
    "stakeholdertype": (
        "INTERNAL",
        "MANAGEMENT",
        "CUSTOMER",
        "REGULATOR",
        "VENDOR",
        "PARTNER",
        "MEDIA",
        "PUBLIC",
    ),
    "stakeholderrole": (
        "CISO",
        "CTO",
        "CEO",
        "CFO",
        "COO",
        "BOARD_MEMBER",
        "DPO",
        "INCIDENT_MANAGER",
        "OPERATIONS_TEAM",
        "SECURITY_TEAM",
        "LEGAL_TEAM",
        "PR_TEAM",
        "CUSTOMER_SERVICE",
        "AFFECTED_DEPARTMENT",
        "NCA",
        "CSIRT",
        "ECB",
        "ENISA",
    ),
    "communicationchannel": (
        "EMAIL",
        "SMS",
        "PHONE",
        "SLACK",
        "TEAMS",
        "PORTAL",
        "WEBHOOK",
        "OFFICIAL_LETTER",
        "PRESS_RELEASE",
    ),
    "communicationtype": (
        "INITIAL_NOTIFICATION",
        "ESCALATION",
        "STATUS_UPDATE",
        "RESOLUTION",
        "POST_INCIDENT",
        "REGULATORY_REPORT",
        "CUSTOMER_ADVISORY",
        "PUBLIC_STATEMENT",
        "INTERNAL_BRIEFING",
    ),
    "communicationstatus": ("SENDING", "SENT", "DELIVERED", "READ", "ACKNOWLEDGED", "FAILED"),
    "escalationpathstatus": ("ACTIVE", "ACKNOWLEDGED", "EXPIRED"),
    "schedulednotificationstatus": ("PENDING", "REMINDED", "SENT", "MISSED"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    conn = op.get_bind()

    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(conn, checkfirst=True)

    op.create_table(
        "incidents",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("incident_number", sa.String(50), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("incident_type", sa.String(100), nullable=False),
        sa.Column("severity", _enum("incidentseverity"), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="OPEN"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("affected_customers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "attributes",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "stakeholders",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("stakeholder_type", _enum("stakeholdertype"), nullable=False),
        sa.Column("role", _enum("stakeholderrole"), nullable=False),
        sa.Column("organization", sa.String(200), nullable=True),
        sa.Column(
            "contacts",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stakeholders_role", "stakeholders", ["role"])

    op.create_table(
        "escalation_rules",
        sa.Column("id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("triggers", postgresql.JSONB(), nullable=False),
        sa.Column("severity_policies", postgresql.JSONB(), nullable=False),
        sa.Column("regulatory_requirements", postgresql.JSONB(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "escalation_paths",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("incident_id", sa.UUID(), nullable=False),
        sa.Column("rule_id", sa.String(100), nullable=False),
        sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_level", sa.Integer(), nullable=False),
        sa.Column("levels", postgresql.JSONB(), nullable=False),
        sa.Column("status", _enum("escalationpathstatus"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("evidence_event_id", sa.UUID(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["incident_id"], ["incidents.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("incident_id", "rule_id", name="uq_escalation_path_incident_rule"),
    )
    op.create_index("ix_escalation_paths_incident_id", "escalation_paths", ["incident_id"])
    op.create_index("ix_escalation_paths_status", "escalation_paths", ["status"])
    op.create_index("ix_escalation_paths_next_check_at", "escalation_paths", ["next_check_at"])

    op.create_table(
        "communications",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("reference", sa.String(32), nullable=False),
        sa.Column("incident_id", sa.UUID(), nullable=False),
        sa.Column("communication_type", _enum("communicationtype"), nullable=False),
        sa.Column("channel", _enum("communicationchannel"), nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("content_format", sa.String(20), nullable=False, server_default="HTML"),
        sa.Column("template_id", sa.UUID(), nullable=True),
        sa.Column("escalation_path_id", sa.UUID(), nullable=True),
        sa.Column("escalation_level", sa.Integer(), nullable=True),
        sa.Column("recipients", postgresql.JSONB(), nullable=False),
        sa.Column("status", _enum("communicationstatus"), nullable=False),
        sa.Column("delivery_stats", postgresql.JSONB(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("evidence_event_id", sa.UUID(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["incident_id"], ["incidents.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(
            ["escalation_path_id"], ["escalation_paths.id"], ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference"),
    )
    op.create_index("ix_communications_incident_id", "communications", ["incident_id"])
    op.create_index(
        "ix_communications_escalation_path_id", "communications", ["escalation_path_id"]
    )

    op.create_table(
        "communication_templates",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("communication_type", _enum("communicationtype"), nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("content_format", sa.String(20), nullable=False, server_default="HTML"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "communication_timeline",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("incident_id", sa.UUID(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("communication_id", sa.UUID(), nullable=True),
        sa.Column("escalation_path_id", sa.UUID(), nullable=True),
        sa.Column("actor", sa.String(200), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.ForeignKeyConstraint(["incident_id"], ["incidents.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_communication_timeline_incident_id", "communication_timeline", ["incident_id"]
    )
    op.create_index(
        "ix_communication_timeline_occurred_at", "communication_timeline", ["occurred_at"]
    )

    op.create_table(
        "scheduled_notifications",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("incident_id", sa.UUID(), nullable=False),
        sa.Column("escalation_path_id", sa.UUID(), nullable=True),
        sa.Column("regulation", sa.String(50), nullable=False),
        sa.Column("article", sa.String(50), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reminder_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mandatory_recipients", postgresql.JSONB(), nullable=False),
        sa.Column("status", _enum("schedulednotificationstatus"), nullable=False),
        sa.Column("reminded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("meets_deadline", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["incident_id"], ["incidents.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(
            ["escalation_path_id"], ["escalation_paths.id"], ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "incident_id",
            "regulation",
            "article",
            name="uq_scheduled_notification_requirement",
        ),
    )
    op.create_index(
        "ix_scheduled_notifications_incident_id", "scheduled_notifications", ["incident_id"]
    )
    op.create_index(
        "ix_scheduled_notifications_deadline", "scheduled_notifications", ["deadline"]
    )
    op.create_index(
        "ix_scheduled_notifications_reminder_at", "scheduled_notifications", ["reminder_at"]
    )
    op.create_index("ix_scheduled_notifications_status", "scheduled_notifications", ["status"])

    # Append-only evidence store
    op.create_table(
        "evidence_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("tags", postgresql.JSONB(), nullable=False),
        sa.Column("articles", postgresql.JSONB(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_evidence_events_event_type", "evidence_events", ["event_type"])
    op.create_index("ix_evidence_events_created_at", "evidence_events", ["created_at"])


def downgrade() -> None:
    op.drop_table("evidence_events")
    op.drop_table("scheduled_notifications")
    op.drop_table("communication_timeline")
    op.drop_table("communication_templates")
    op.drop_table("communications")
    op.drop_table("escalation_paths")
    op.drop_table("escalation_rules")
    op.drop_table("stakeholders")
    op.drop_table("incidents")

    for name in reversed(ENUMS):
        op.execute(f"DROP TYPE IF EXISTS {name}")
