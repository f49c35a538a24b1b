"""Lot execution schema: processes, lot runs, stages, audit.

Revision ID: 0001
Revises:
Create Date: 2026-10-17
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def _id():
    return sa.Column("id", sa.String(36), primary_key=True)


def _created():
    return sa.Column("created_at", sa.DateTime(), server_default=sa.func.now())


def _updated():
    return sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now())


def upgrade() -> None:
    # ── Definitions / inventory ──────────────────────────────
    op.create_table(
        "process_definitions",
        _id(),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        _created(),
        _updated(),
    )
    op.create_table(
        "process_steps",
        _id(),
        sa.Column("process_id", sa.String(36),
                  sa.ForeignKey("process_definitions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("step_code", sa.String(30), nullable=False),
        sa.Column("step_name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("requires_qc", sa.Boolean(), server_default=sa.false()),
        sa.Column("default_location_id", sa.String(36)),
        _created(),
        sa.UniqueConstraint("process_id", "seq", name="uq_process_steps_process_seq"),
    )
    op.create_index("ix_process_steps_process_id", "process_steps", ["process_id"])

    op.create_table(
        "supply_batches",
        _id(),
        sa.Column("lot_no", sa.String(100), nullable=False, unique=True),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("unit", sa.String(20), server_default="kg"),
        sa.Column("received_qty", sa.Float(), server_default="0"),
        sa.Column("current_qty", sa.Float(), server_default="0"),
        sa.Column("process_status", sa.String(30), server_default="UNPROCESSED"),
        sa.Column("quality_status", sa.String(30), server_default="PENDING"),
        sa.Column("expiry_date", sa.Date()),
        _created(),
        _updated(),
    )
    op.create_index("ix_supply_batches_process_status", "supply_batches", ["process_status"])

    # ── Execution ────────────────────────────────────────────
    op.create_table(
        "lot_runs",
        _id(),
        sa.Column("supply_batch_id", sa.String(36), sa.ForeignKey("supply_batches.id"), nullable=False),
        sa.Column("process_id", sa.String(36), sa.ForeignKey("process_definitions.id"), nullable=False),
        sa.Column("status", sa.String(30), server_default="PENDING"),
        sa.Column("started_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("is_rework", sa.Boolean(), server_default=sa.false()),
        sa.Column("original_process_lot_run_id", sa.String(36), sa.ForeignKey("lot_runs.id")),
        sa.Column("started_by", sa.String(36)),
        _created(),
        _updated(),
        sa.UniqueConstraint("supply_batch_id", "process_id", name="uq_lot_runs_batch_process"),
    )
    op.create_index("ix_lot_runs_supply_batch_id", "lot_runs", ["supply_batch_id"])
    op.create_index("ix_lot_runs_process_id", "lot_runs", ["process_id"])
    op.create_index("ix_lot_runs_status", "lot_runs", ["status"])
    op.create_index("ix_lot_runs_original_process_lot_run_id", "lot_runs", ["original_process_lot_run_id"])

    op.create_table(
        "step_runs",
        _id(),
        sa.Column("lot_run_id", sa.String(36),
                  sa.ForeignKey("lot_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("process_step_id", sa.String(36), sa.ForeignKey("process_steps.id"), nullable=False),
        sa.Column("status", sa.String(30), server_default="PENDING"),
        sa.Column("started_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("performed_by", sa.String(36)),
        sa.Column("performed_by_name", sa.String(200)),
        sa.Column("location_id", sa.String(36)),
        sa.Column("quantity_out_kg", sa.Float()),
        sa.Column("notes", sa.Text()),
        _created(),
        _updated(),
        sa.UniqueConstraint("lot_run_id", "process_step_id", name="uq_step_runs_run_step"),
    )
    op.create_index("ix_step_runs_lot_run_id", "step_runs", ["lot_run_id"])
    op.create_index("ix_step_runs_status", "step_runs", ["status"])

    op.create_table(
        "production_batches",
        _id(),
        sa.Column("batch_code", sa.String(50), nullable=False, unique=True),
        sa.Column("lot_run_id", sa.String(36), sa.ForeignKey("lot_runs.id"), nullable=False, unique=True),
        sa.Column("supply_batch_id", sa.String(36), sa.ForeignKey("supply_batches.id")),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Float(), server_default="0"),
        sa.Column("unit", sa.String(20), server_default="kg"),
        _created(),
    )

    op.create_table(
        "reworked_lots",
        _id(),
        sa.Column("original_supply_batch_id", sa.String(36), sa.ForeignKey("supply_batches.id"), nullable=False),
        sa.Column("rework_supply_batch_id", sa.String(36), sa.ForeignKey("supply_batches.id"), nullable=False),
        sa.Column("step_run_id", sa.String(36), sa.ForeignKey("step_runs.id"), nullable=False),
        sa.Column("quantity_kg", sa.Float(), nullable=False),
        sa.Column("reason", sa.Text()),
        sa.Column("created_by", sa.String(36)),
        _created(),
    )
    op.create_index("ix_reworked_lots_original_supply_batch_id", "reworked_lots", ["original_supply_batch_id"])
    op.create_index("ix_reworked_lots_rework_supply_batch_id", "reworked_lots", ["rework_supply_batch_id"])
    op.create_index("ix_reworked_lots_step_run_id", "reworked_lots", ["step_run_id"])

    op.create_table(
        "step_waste",
        _id(),
        sa.Column("step_run_id", sa.String(36),
                  sa.ForeignKey("step_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stage", sa.String(30), nullable=False),
        sa.Column("waste_type", sa.String(100), nullable=False),
        sa.Column("quantity_kg", sa.Float(), nullable=False),
        sa.Column("remarks", sa.Text()),
        _created(),
    )
    op.create_index("ix_step_waste_step_run_id", "step_waste", ["step_run_id"])

    op.create_table(
        "non_conformances",
        _id(),
        sa.Column("step_run_id", sa.String(36),
                  sa.ForeignKey("step_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("nc_type", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(20), server_default="LOW"),
        sa.Column("corrective_action", sa.Text()),
        sa.Column("resolved", sa.Boolean(), server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime()),
        sa.Column("raised_by", sa.String(36)),
        _created(),
    )
    op.create_index("ix_non_conformances_step_run_id", "non_conformances", ["step_run_id"])
    op.create_index("ix_non_conformances_resolved", "non_conformances", ["resolved"])

    op.create_table(
        "step_quality_checks",
        _id(),
        sa.Column("step_run_id", sa.String(36),
                  sa.ForeignKey("step_runs.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("overall_score", sa.Float()),
        sa.Column("evaluated_by", sa.String(36)),
        sa.Column("evaluated_by_name", sa.String(255)),
        sa.Column("evaluated_at", sa.DateTime(), server_default=sa.func.now()),
        _created(),
    )
    op.create_index("ix_step_quality_checks_step_run_id", "step_quality_checks", ["step_run_id"])

    op.create_table(
        "step_quality_check_items",
        _id(),
        sa.Column("quality_check_id", sa.String(36),
                  sa.ForeignKey("step_quality_checks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("parameter_code", sa.String(50), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("results", sa.Text()),
        sa.Column("remarks", sa.Text()),
    )
    op.create_index(
        "ix_step_quality_check_items_quality_check_id",
        "step_quality_check_items", ["quality_check_id"],
    )

    # ── Sorting ──────────────────────────────────────────────
    op.create_table(
        "sorting_outputs",
        _id(),
        sa.Column("step_run_id", sa.String(36),
                  sa.ForeignKey("step_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("quantity_kg", sa.Float(), nullable=False),
        sa.Column("moisture_percent", sa.Float()),
        sa.Column("remarks", sa.Text()),
        _created(),
        _updated(),
    )
    op.create_index("ix_sorting_outputs_step_run_id", "sorting_outputs", ["step_run_id"])

    op.create_table(
        "sorting_waste",
        _id(),
        sa.Column("sorting_output_id", sa.String(36),
                  sa.ForeignKey("sorting_outputs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("waste_type", sa.String(100), nullable=False),
        sa.Column("quantity_kg", sa.Float(), nullable=False),
        _created(),
    )
    op.create_index("ix_sorting_waste_sorting_output_id", "sorting_waste", ["sorting_output_id"])

    # ── Packaging ────────────────────────────────────────────
    op.create_table(
        "packaging_runs",
        _id(),
        sa.Column("step_run_id", sa.String(36),
                  sa.ForeignKey("step_runs.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("visual_status", sa.String(20)),
        sa.Column("rework_destination", sa.String(100)),
        sa.Column("pest_status", sa.String(20)),
        sa.Column("foreign_object_status", sa.String(20)),
        sa.Column("mould_status", sa.String(20)),
        sa.Column("damaged_kernels_pct", sa.Float()),
        sa.Column("insect_damaged_kernels_pct", sa.Float()),
        sa.Column("nitrogen_used", sa.Boolean()),
        sa.Column("nitrogen_batch_number", sa.String(100)),
        sa.Column("primary_packaging_type", sa.String(100)),
        sa.Column("primary_packaging_batch", sa.String(100)),
        sa.Column("secondary_packaging", sa.String(100)),
        sa.Column("secondary_packaging_type", sa.String(100)),
        sa.Column("secondary_packaging_batch", sa.String(100)),
        sa.Column("label_correct", sa.Boolean()),
        sa.Column("label_legible", sa.Boolean()),
        sa.Column("pallet_integrity", sa.Boolean()),
        sa.Column("allergen_swab_result", sa.String(50)),
        sa.Column("remarks", sa.Text()),
        _created(),
        _updated(),
    )

    for table, extra in (
        ("packaging_weight_checks", [
            sa.Column("product_id", sa.String(36)),
            sa.Column("target_weight_kg", sa.Float(), nullable=False),
            sa.Column("actual_weight_kg", sa.Float(), nullable=False),
            sa.Column("tolerance_kg", sa.Float()),
            _updated(),
        ]),
        ("packaging_photos", [
            sa.Column("photo_type", sa.String(20), nullable=False),
            sa.Column("file_path", sa.String(500), nullable=False),
        ]),
        ("packaging_waste", [
            sa.Column("waste_type", sa.String(100), nullable=False),
            sa.Column("quantity_kg", sa.Float(), nullable=False),
            sa.Column("remarks", sa.Text()),
        ]),
    ):
        op.create_table(
            table,
            _id(),
            sa.Column("packaging_run_id", sa.String(36),
                      sa.ForeignKey("packaging_runs.id", ondelete="CASCADE"), nullable=False),
            *extra,
            _created(),
        )
        op.create_index(f"ix_{table}_packaging_run_id", table, ["packaging_run_id"])

    # ── Metal detection ──────────────────────────────────────
    op.create_table(
        "metal_check_attempts",
        _id(),
        sa.Column("packaging_run_id", sa.String(36),
                  sa.ForeignKey("packaging_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sorting_output_id", sa.String(36), sa.ForeignKey("sorting_outputs.id"), nullable=False),
        sa.Column("attempt_no", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("remarks", sa.Text()),
        sa.Column("checked_by", sa.String(36)),
        sa.Column("checked_by_name", sa.String(200)),
        sa.Column("checked_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "packaging_run_id", "sorting_output_id", "attempt_no",
            name="uq_metal_check_attempts_output_no",
        ),
    )
    op.create_index("ix_metal_check_attempts_packaging_run_id", "metal_check_attempts", ["packaging_run_id"])
    op.create_index("ix_metal_check_attempts_sorting_output_id", "metal_check_attempts", ["sorting_output_id"])

    op.create_table(
        "metal_check_rejections",
        _id(),
        sa.Column("attempt_id", sa.String(36),
                  sa.ForeignKey("metal_check_attempts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("object_type", sa.String(100), nullable=False),
        sa.Column("weight_kg", sa.Float(), nullable=False),
        sa.Column("corrective_action", sa.Text()),
        _created(),
    )
    op.create_index("ix_metal_check_rejections_attempt_id", "metal_check_rejections", ["attempt_id"])

    # ── Packs / storage ──────────────────────────────────────
    op.create_table(
        "pack_entries",
        _id(),
        sa.Column("packaging_run_id", sa.String(36),
                  sa.ForeignKey("packaging_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sorting_output_id", sa.String(36), sa.ForeignKey("sorting_outputs.id"), nullable=False),
        sa.Column("pack_identifier", sa.String(100), nullable=False),
        sa.Column("packing_type", sa.String(100), nullable=False),
        sa.Column("pack_size_kg", sa.Float()),
        sa.Column("quantity_kg", sa.Float(), nullable=False),
        sa.Column("pack_count", sa.Integer(), server_default="0"),
        sa.Column("remainder_kg", sa.Float(), server_default="0"),
        sa.Column("metal_check_status", sa.String(10), nullable=False),
        sa.Column("metal_check_attempts", sa.Integer(), nullable=False),
        sa.Column("metal_check_last_id", sa.String(36), sa.ForeignKey("metal_check_attempts.id"), nullable=False),
        sa.Column("metal_check_last_checked_at", sa.DateTime()),
        sa.Column("metal_check_last_checked_by", sa.String(36)),
        sa.Column("created_by", sa.String(36)),
        _created(),
    )
    op.create_index("ix_pack_entries_packaging_run_id", "pack_entries", ["packaging_run_id"])
    op.create_index("ix_pack_entries_sorting_output_id", "pack_entries", ["sorting_output_id"])

    op.create_table(
        "storage_allocations",
        _id(),
        sa.Column("packaging_run_id", sa.String(36),
                  sa.ForeignKey("packaging_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("pack_entry_id", sa.String(36), sa.ForeignKey("pack_entries.id"), nullable=False),
        sa.Column("storage_type", sa.String(20), nullable=False),
        sa.Column("units_count", sa.Integer(), nullable=False),
        sa.Column("packs_per_unit", sa.Integer(), nullable=False),
        sa.Column("total_packs", sa.Integer(), nullable=False),
        sa.Column("total_quantity_kg", sa.Float(), nullable=False),
        sa.Column("box_unit_code", sa.String(100)),
        sa.Column("notes", sa.Text()),
        _created(),
        _updated(),
    )
    op.create_index("ix_storage_allocations_packaging_run_id", "storage_allocations", ["packaging_run_id"])
    op.create_index("ix_storage_allocations_pack_entry_id", "storage_allocations", ["pack_entry_id"])

    # ── Audit ────────────────────────────────────────────────
    op.create_table(
        "activity_logs",
        _id(),
        sa.Column("operator_id", sa.String(36), nullable=False),
        sa.Column("operator_name", sa.String(200), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(100)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        _created(),
    )
    op.create_index("ix_activity_logs_operator_id", "activity_logs", ["operator_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])


def downgrade() -> None:
    for table in (
        "activity_logs",
        "storage_allocations",
        "pack_entries",
        "metal_check_rejections",
        "metal_check_attempts",
        "packaging_waste",
        "packaging_photos",
        "packaging_weight_checks",
        "packaging_runs",
        "sorting_waste",
        "sorting_outputs",
        "step_quality_check_items",
        "step_quality_checks",
        "non_conformances",
        "step_waste",
        "reworked_lots",
        "production_batches",
        "step_runs",
        "lot_runs",
        "supply_batches",
        "process_steps",
        "process_definitions",
    ):
        op.drop_table(table)
