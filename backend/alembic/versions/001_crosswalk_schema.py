"""Crosswalk engine schema

Revision ID: 001_crosswalk_schema
Revises:
Create Date: 2026-09-28

Creates: frameworks, framework_versions, requirements, controls, control_evidence,
         mappings, mapping_controls, mapping_gaps, compliance_drifts,
         drift_required_actions, drift_transitions, audit_log

Status/category columns are VARCHAR(30) holding the enum value.
"""
from alembic import op
import sqlalchemy as sa

revision = "001_crosswalk_schema"
down_revision = None
branch_labels = None
depends_on = None


def _status(name: str, default: str | None = None) -> sa.Column:
    kwargs = {"server_default": default} if default else {}
    return sa.Column(name, sa.String(30), nullable=False, **kwargs)


def upgrade() -> None:
    # ── 1. Requirement/Framework Store ────────────────────────────
    op.create_table(
        "frameworks",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("provider", sa.String(200), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "framework_versions",
        sa.Column("id", sa.String(150), primary_key=True),
        sa.Column("framework_id", sa.String(100),
                  sa.ForeignKey("frameworks.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("version_code", sa.String(50), nullable=False),
        sa.Column("effective_date", sa.Date, nullable=False),
        sa.Column("sunset_date", sa.Date, nullable=True),
        _status("status", "final"),
        sa.Column("source_url", sa.String(1000), nullable=True),
        sa.Column("published_by", sa.String(200), nullable=True),
        sa.Column("published_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("version", sa.Integer, server_default="1", nullable=False),
        sa.UniqueConstraint("framework_id", "version_code", name="uq_fwver_code"),
    )
    op.create_index("ix_fwver_framework_effective", "framework_versions", ["framework_id", "effective_date"])

    op.create_table(
        "requirements",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("framework_id", sa.String(100),
                  sa.ForeignKey("frameworks.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("version_id", sa.String(150),
                  sa.ForeignKey("framework_versions.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("requirement_id", sa.String(150), nullable=False),
        sa.Column("section_code", sa.String(100), nullable=False),
        sa.Column("section_title", sa.String(500), nullable=True),
        sa.Column("requirement_text", sa.Text, nullable=False),
        sa.Column("requirement_summary", sa.Text, nullable=True),
        _status("category", "traditional"),
        sa.Column("control_family", sa.String(200), nullable=True),
        _status("risk_level", "medium"),
        sa.Column("implementation_guidance", sa.JSON, nullable=False),
        sa.Column("evidence_examples", sa.JSON, nullable=False),
        sa.Column("keywords", sa.JSON, nullable=False),
        sa.Column("related_requirements", sa.JSON, nullable=False),
        sa.Column("parent_requirement_id", sa.String(150), nullable=True),
        sa.Column("supersedes", sa.String(150), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("version_id", "requirement_id", name="uq_req_version_rid"),
    )
    op.create_index("ix_req_framework_rid", "requirements", ["framework_id", "requirement_id"])
    op.create_index("ix_req_supersedes", "requirements", ["version_id", "supersedes"])

    # ── 2. Control Store ──────────────────────────────────────────
    op.create_table(
        "controls",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("control_number", sa.String(50), nullable=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("control_family", sa.String(200), nullable=True),
        sa.Column("owner", sa.String(200), nullable=True),
        _status("status", "not_started"),
        sa.Column("effectiveness_rating", sa.Integer, server_default="3", nullable=False),
        sa.Column("deprecated_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("version", sa.Integer, server_default="1", nullable=False),
    )

    op.create_table(
        "control_evidence",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("control_id", sa.String(100),
                  sa.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("evidence_type", sa.String(50), server_default="other", nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("file_url", sa.String(1000), nullable=True),
        sa.Column("collected_date", sa.Date, nullable=False),
        sa.Column("expiration_date", sa.Date, nullable=True),
        sa.Column("collected_by", sa.String(200), nullable=True),
        _status("state", "pending"),
        sa.Column("verified_by", sa.String(200), nullable=True),
        sa.Column("verified_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
    )

    # ── 3. Crosswalk Mapper ───────────────────────────────────────
    op.create_table(
        "mappings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("requirement_pk", sa.Integer,
                  sa.ForeignKey("requirements.id", ondelete="RESTRICT"), nullable=False, unique=True),
        sa.Column("not_applicable", sa.Boolean, server_default=sa.text("0"), nullable=False),
        sa.Column("coverage_score", sa.Float, server_default="0", nullable=False),
        _status("compliance_status", "non_compliant"),
        _status("review_status", "active"),
        sa.Column("carried_from_mapping_id", sa.Integer,
                  sa.ForeignKey("mappings.id", ondelete="SET NULL"), nullable=True),
        sa.Column("coverage_justification", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(200), nullable=True),
        sa.Column("last_computed_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("version", sa.Integer, server_default="1", nullable=False),
    )

    op.create_table(
        "mapping_controls",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("mapping_id", sa.Integer,
                  sa.ForeignKey("mappings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("control_id", sa.String(100),
                  sa.ForeignKey("controls.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("contribution_weight", sa.Integer, server_default="100", nullable=False),
        sa.Column("coverage_aspects", sa.JSON, nullable=False),
        sa.UniqueConstraint("mapping_id", "control_id", name="uq_mapping_control"),
    )

    op.create_table(
        "mapping_gaps",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("mapping_id", sa.Integer,
                  sa.ForeignKey("mappings.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("control_id", sa.String(100), nullable=True),
        _status("gap_type"),
        _status("severity", "medium"),
        sa.Column("description", sa.Text, nullable=False),
        _status("status", "open"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("resolved_at", sa.DateTime, nullable=True),
    )

    # ── 4. Drift Detector ─────────────────────────────────────────
    op.create_table(
        "compliance_drifts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("framework_id", sa.String(100), sa.ForeignKey("frameworks.id"), nullable=False),
        sa.Column("requirement_id", sa.String(150), nullable=False),
        sa.Column("requirement_pk", sa.Integer, sa.ForeignKey("requirements.id"), nullable=False),
        sa.Column("previous_requirement_pk", sa.Integer, sa.ForeignKey("requirements.id"), nullable=True),
        sa.Column("previous_version_id", sa.String(150),
                  sa.ForeignKey("framework_versions.id"), nullable=False),
        sa.Column("new_version_id", sa.String(150), sa.ForeignKey("framework_versions.id"), nullable=False),
        _status("change_type"),
        _status("significance"),
        _status("impact_level"),
        sa.Column("change_summary", sa.Text, nullable=False),
        sa.Column("comparison", sa.JSON, nullable=False),
        sa.Column("affected_control_ids", sa.JSON, nullable=False),
        sa.Column("suggested_mappings", sa.JSON, nullable=False),
        sa.Column("compliance_deadline", sa.Date, nullable=True),
        _status("status", "detected"),
        sa.Column("assigned_to", sa.String(200), nullable=True),
        sa.Column("due_date", sa.Date, nullable=True),
        sa.Column("resolution_notes", sa.Text, nullable=True),
        sa.Column("detected_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("acknowledged_by", sa.String(200), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime, nullable=True),
        sa.Column("resolved_by", sa.String(200), nullable=True),
        sa.Column("resolved_at", sa.DateTime, nullable=True),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("version", sa.Integer, server_default="1", nullable=False),
        sa.UniqueConstraint(
            "requirement_id", "previous_version_id", "new_version_id", name="uq_drift_req_versions",
        ),
    )
    op.create_index("ix_drift_framework_status", "compliance_drifts", ["framework_id", "status"])

    op.create_table(
        "drift_required_actions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("drift_id", sa.Integer,
                  sa.ForeignKey("compliance_drifts.id", ondelete="CASCADE"), nullable=False, index=True),
        _status("action_type"),
        sa.Column("description", sa.Text, nullable=False),
        _status("priority", "medium"),
        sa.Column("deadline", sa.Date, nullable=True),
        sa.Column("assigned_to", sa.String(200), nullable=True),
        _status("status", "pending"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "drift_transitions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("drift_id", sa.Integer,
                  sa.ForeignKey("compliance_drifts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("from_status", sa.String(30), nullable=True),
        _status("to_status"),
        sa.Column("actor", sa.String(200), nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
    )

    # ── 5. Audit log ──────────────────────────────────────────────
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor", sa.String(200), nullable=True),
        sa.Column("action", sa.String(10), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(150), nullable=False),
        sa.Column("changes", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_entity", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_table("drift_transitions")
    op.drop_table("drift_required_actions")
    op.drop_index("ix_drift_framework_status", table_name="compliance_drifts")
    op.drop_table("compliance_drifts")
    op.drop_table("mapping_gaps")
    op.drop_table("mapping_controls")
    op.drop_table("mappings")
    op.drop_table("control_evidence")
    op.drop_table("controls")
    op.drop_index("ix_req_supersedes", table_name="requirements")
    op.drop_index("ix_req_framework_rid", table_name="requirements")
    op.drop_table("requirements")
    op.drop_index("ix_fwver_framework_effective", table_name="framework_versions")
    op.drop_table("framework_versions")
    op.drop_table("frameworks")
