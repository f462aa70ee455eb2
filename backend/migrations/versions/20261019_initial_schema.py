"""Initial MediSupply schema

Auth and security, master data, workflow engine, purchase orders, invoice
receiving, quality control, warehouse approval and the inventory ledger.

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=False, default_now=False):
    if default_now:
        return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _indexes(table, *specs):
    with op.batch_alter_table(table, schema=None) as batch_op:
        for columns, unique in specs:
            columns = [columns] if isinstance(columns, str) else list(columns)
            batch_op.create_index(f"ix_{table}_{'_'.join(columns)}", columns, unique=unique)


def upgrade():
    # -- Auth & security --------------------------------------------------

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(128), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _ts("created_at", default_now=True),
        _ts("last_login_at", nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sqlite_autoincrement=True,
    )
    _indexes("users", ("username", True))

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("created_at", default_now=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_roles_name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(64), nullable=False),
        _ts("created_at", default_now=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes("permissions", ("code", True), ("category", False))

    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        _ts("assigned_at", default_now=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "role_id", name="uq_user_roles"),
        sqlite_autoincrement=True,
    )
    _indexes("user_roles", ("user_id", False), ("role_id", False))

    op.create_table(
        "role_permissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        _ts("granted_at", default_now=True),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permissions"),
        sqlite_autoincrement=True,
    )
    _indexes("role_permissions", ("role_id", False), ("permission_id", False))

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        _ts("created_at", default_now=True),
        _ts("last_used_at", default_now=True),
        _ts("expires_at"),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        _ts("revoked_at", nullable=True),
        sa.Column("revoked_reason", sa.String(255), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes(
        "session_tokens",
        ("user_id", False),
        ("token_hash", True),
        ("expires_at", False),
        ("is_revoked", False),
    )
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"])

    op.create_table(
        "user_permission_overrides",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("permission_code", sa.String(64), nullable=False),
        sa.Column("override_type", sa.String(8), nullable=False),
        sa.Column("granted_by_user_id", sa.Integer(), nullable=True),
        _ts("granted_at", default_now=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("revoked_by_user_id", sa.Integer(), nullable=True),
        _ts("revoked_at", nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["granted_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["revoked_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "permission_code", name="uq_user_perm_override"),
        sqlite_autoincrement=True,
    )
    _indexes("user_permission_overrides", ("user_id", False), ("permission_code", False), ("is_active", False))

    op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("resource", sa.String(128), nullable=True),
        sa.Column("action", sa.String(64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        _ts("occurred_at", default_now=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes(
        "security_events",
        ("user_id", False),
        ("event_type", False),
        ("success", False),
        ("occurred_at", False),
    )
    op.create_index("ix_security_events_user_type", "security_events", ["user_id", "event_type"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("resource", sa.String(64), nullable=False),
        sa.Column("resource_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("before", sa.Text(), nullable=True),
        sa.Column("after", sa.Text(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        _ts("occurred_at", default_now=True),
        _ts("created_at", default_now=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes("audit_events", ("action", False), ("actor_user_id", False), ("occurred_at", False))
    op.create_index("ix_audit_events_resource", "audit_events", ["resource", "resource_id"])

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _ts("updated_at", default_now=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes("document_sequences", ("document_type", True))

    # -- Master data ------------------------------------------------------

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(32), nullable=False, server_default="unit"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _ts("created_at", default_now=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes("products", ("code", True))

    for table, name_len in (("warehouses", 120), ("principals", 255)):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(32), nullable=False),
            sa.Column("name", sa.String(name_len), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            _ts("created_at", default_now=True),
            sa.PrimaryKeyConstraint("id"),
            sqlite_autoincrement=True,
        )
        _indexes(table, ("code", True))

    # -- Workflow engine --------------------------------------------------

    op.create_table(
        "workflow_stages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("allowed_actions", sa.JSON(), nullable=False),
        sa.Column("required_permissions", sa.JSON(), nullable=False),
        sa.Column("is_initial", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_terminal", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("definition_version", sa.String(32), nullable=False),
        _ts("created_at", default_now=True),
        _ts("updated_at", default_now=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sequence", name="uq_workflow_stages_sequence"),
        sqlite_autoincrement=True,
    )
    _indexes("workflow_stages", ("code", True), ("is_active", False))

    op.create_table(
        "workflow_transitions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("from_stage_id", sa.Integer(), nullable=False),
        sa.Column("to_stage_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("required_fields", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("definition_version", sa.String(32), nullable=False),
        _ts("created_at", default_now=True),
        sa.ForeignKeyConstraint(["from_stage_id"], ["workflow_stages.id"]),
        sa.ForeignKeyConstraint(["to_stage_id"], ["workflow_stages.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("from_stage_id", "to_stage_id", "action", name="uq_workflow_transition_triple"),
        sqlite_autoincrement=True,
    )
    _indexes("workflow_transitions", ("from_stage_id", False), ("to_stage_id", False))
    op.create_index(
        "ix_workflow_transitions_lookup", "workflow_transitions", ["from_stage_id", "action", "is_active"]
    )

    op.create_table(
        "stage_permissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("permission_code", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("role_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _ts("expires_at", nullable=True),
        sa.Column("assigned_by_user_id", sa.Integer(), nullable=True),
        _ts("assigned_at", default_now=True),
        sa.CheckConstraint("(user_id IS NULL) <> (role_id IS NULL)", name="ck_stage_permissions_single_subject"),
        sa.ForeignKeyConstraint(["stage_id"], ["workflow_stages.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.ForeignKeyConstraint(["assigned_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stage_id", "permission_code", "user_id", "role_id", name="uq_stage_permission"),
        sqlite_autoincrement=True,
    )
    _indexes(
        "stage_permissions",
        ("stage_id", False),
        ("permission_code", False),
        ("user_id", False),
        ("role_id", False),
    )

    # -- Purchasing -------------------------------------------------------

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("po_number", sa.String(32), nullable=False),
        sa.Column("po_date", sa.Date(), nullable=False),
        sa.Column("principal_id", sa.Integer(), nullable=True),
        sa.Column("current_stage_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(64), nullable=False),
        sa.Column("sub_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grand_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        _ts("approved_at", nullable=True),
        _ts("created_at", default_now=True),
        _ts("updated_at", default_now=True),
        sa.ForeignKeyConstraint(["principal_id"], ["principals.id"]),
        sa.ForeignKeyConstraint(["current_stage_id"], ["workflow_stages.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes(
        "purchase_orders",
        ("po_number", True),
        ("principal_id", False),
        ("current_stage_id", False),
        ("status", False),
    )

    op.create_table(
        "purchase_order_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("purchase_order_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("foc_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_type", sa.String(16), nullable=False, server_default="amount"),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("gst_percentage", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("received_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.CheckConstraint("quantity > 0", name="ck_po_line_quantity_positive"),
        sa.CheckConstraint("foc_quantity >= 0 AND foc_quantity <= quantity", name="ck_po_line_foc_range"),
        sa.CheckConstraint("discount_type IN ('amount', 'percentage')", name="ck_po_line_discount_type"),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("purchase_order_id", "line_number", name="uq_po_line_number"),
        sqlite_autoincrement=True,
    )
    _indexes("purchase_order_lines", ("purchase_order_id", False), ("product_id", False))

    op.create_table(
        "workflow_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("purchase_order_id", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("from_stage_id", sa.Integer(), nullable=True),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("action_by_user_id", sa.Integer(), nullable=False),
        _ts("action_at"),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["from_stage_id"], ["workflow_stages.id"]),
        sa.ForeignKeyConstraint(["stage_id"], ["workflow_stages.id"]),
        sa.ForeignKeyConstraint(["action_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("purchase_order_id", "sequence", name="uq_workflow_history_sequence"),
        sqlite_autoincrement=True,
    )
    _indexes("workflow_history", ("purchase_order_id", False))

    op.create_table(
        "invoice_receivings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_number", sa.String(64), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=True),
        sa.Column("purchase_order_id", sa.Integer(), nullable=False),
        sa.Column("received_by_user_id", sa.Integer(), nullable=False),
        _ts("received_at"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["received_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes("invoice_receivings", ("invoice_number", True), ("purchase_order_id", False))

    op.create_table(
        "invoice_receiving_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_receiving_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("received_qty", sa.Integer(), nullable=False),
        sa.Column("unit", sa.String(32), nullable=True),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("batch_number", sa.String(64), nullable=False),
        sa.Column("mfg_date", sa.Date(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.CheckConstraint("received_qty > 0", name="ck_invoice_line_qty_positive"),
        sa.ForeignKeyConstraint(["invoice_receiving_id"], ["invoice_receivings.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes("invoice_receiving_lines", ("invoice_receiving_id", False), ("product_id", False))

    # -- Quality control --------------------------------------------------

    op.create_table(
        "quality_controls",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("qc_number", sa.String(32), nullable=False),
        sa.Column("invoice_receiving_id", sa.Integer(), nullable=False),
        sa.Column("purchase_order_id", sa.Integer(), nullable=False),
        sa.Column("qc_type", sa.String(32), nullable=False, server_default="standard"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("overall_result", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("assigned_to_user_id", sa.Integer(), nullable=True),
        sa.Column("temperature_c", sa.Numeric(5, 2), nullable=True),
        sa.Column("humidity_pct", sa.Numeric(5, 2), nullable=True),
        sa.Column("light_condition", sa.String(16), nullable=True),
        sa.Column("qc_remarks", sa.Text(), nullable=True),
        sa.Column("submitted_by_user_id", sa.Integer(), nullable=True),
        _ts("submitted_at", nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        _ts("approved_at", nullable=True),
        sa.Column("approval_remarks", sa.Text(), nullable=True),
        sa.Column("rejected_by_user_id", sa.Integer(), nullable=True),
        _ts("rejected_at", nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        _ts("created_at", default_now=True),
        _ts("updated_at", default_now=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint(
            "NOT (approved_at IS NOT NULL AND rejected_at IS NOT NULL)",
            name="ck_qc_terminal_markers_exclusive",
        ),
        sa.ForeignKeyConstraint(["invoice_receiving_id"], ["invoice_receivings.id"]),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["assigned_to_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["submitted_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["rejected_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes(
        "quality_controls",
        ("qc_number", True),
        ("invoice_receiving_id", True),
        ("purchase_order_id", False),
        ("status", False),
        ("assigned_to_user_id", False),
    )

    op.create_table(
        "qc_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("quality_control_id", sa.Integer(), nullable=False),
        sa.Column("invoice_line_id", sa.Integer(), nullable=True),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("received_qty", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(64), nullable=False),
        sa.Column("mfg_date", sa.Date(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("qc_result", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("passed_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failed_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("qc_summary", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["quality_control_id"], ["quality_controls.id"]),
        sa.ForeignKeyConstraint(["invoice_line_id"], ["invoice_receiving_lines.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes("qc_products", ("quality_control_id", False), ("product_id", False))

    op.create_table(
        "qc_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("qc_product_id", sa.Integer(), nullable=False),
        sa.Column("item_number", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("reasons", sa.JSON(), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("inspected_by_user_id", sa.Integer(), nullable=True),
        _ts("inspected_at", nullable=True),
        sa.CheckConstraint("quantity > 0", name="ck_qc_item_quantity_positive"),
        sa.ForeignKeyConstraint(["qc_product_id"], ["qc_products.id"]),
        sa.ForeignKeyConstraint(["inspected_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("qc_product_id", "item_number", name="uq_qc_item_number"),
        sqlite_autoincrement=True,
    )
    _indexes("qc_items", ("qc_product_id", False))

    # -- Warehouse approval -----------------------------------------------

    op.create_table(
        "warehouse_approvals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("wa_number", sa.String(32), nullable=False),
        sa.Column("quality_control_id", sa.Integer(), nullable=False),
        sa.Column("invoice_receiving_id", sa.Integer(), nullable=False),
        sa.Column("purchase_order_id", sa.Integer(), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("overall_result", sa.String(24), nullable=False, server_default="pending"),
        sa.Column("assigned_to_user_id", sa.Integer(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("submitted_by_user_id", sa.Integer(), nullable=True),
        _ts("submitted_at", nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        _ts("approved_at", nullable=True),
        sa.Column("rejected_by_user_id", sa.Integer(), nullable=True),
        _ts("rejected_at", nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("inventory_integration_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("inventory_integration_error", sa.Text(), nullable=True),
        _ts("inventory_integrated_at", nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        _ts("created_at", default_now=True),
        _ts("updated_at", default_now=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint(
            "NOT (approved_at IS NOT NULL AND rejected_at IS NOT NULL)",
            name="ck_wa_terminal_markers_exclusive",
        ),
        sa.ForeignKeyConstraint(["quality_control_id"], ["quality_controls.id"]),
        sa.ForeignKeyConstraint(["invoice_receiving_id"], ["invoice_receivings.id"]),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.ForeignKeyConstraint(["assigned_to_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["submitted_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["rejected_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes(
        "warehouse_approvals",
        ("wa_number", True),
        ("quality_control_id", True),
        ("invoice_receiving_id", False),
        ("purchase_order_id", False),
        ("warehouse_id", False),
        ("status", False),
        ("assigned_to_user_id", False),
        ("inventory_integration_status", False),
    )

    op.create_table(
        "warehouse_approval_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("warehouse_approval_id", sa.Integer(), nullable=False),
        sa.Column("qc_product_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(64), nullable=False),
        sa.Column("mfg_date", sa.Date(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("received_qty", sa.Integer(), nullable=False),
        sa.Column("qc_passed_qty", sa.Integer(), nullable=False),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("approved_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("rejected_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("zone", sa.String(32), nullable=True),
        sa.Column("rack", sa.String(32), nullable=True),
        sa.Column("shelf", sa.String(32), nullable=True),
        sa.Column("bin", sa.String(32), nullable=True),
        sa.Column("status", sa.String(24), nullable=False, server_default="pending"),
        sa.Column("rejection_reasons", sa.JSON(), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("checked_by_user_id", sa.Integer(), nullable=True),
        _ts("checked_at", nullable=True),
        sa.CheckConstraint("approved_qty >= 0 AND rejected_qty >= 0", name="ck_wa_line_qty_non_negative"),
        sa.CheckConstraint("approved_qty + rejected_qty <= qc_passed_qty", name="ck_wa_line_qty_bound"),
        sa.CheckConstraint("qc_passed_qty <= received_qty", name="ck_wa_line_passed_le_received"),
        sa.ForeignKeyConstraint(["warehouse_approval_id"], ["warehouse_approvals.id"]),
        sa.ForeignKeyConstraint(["qc_product_id"], ["qc_products.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["checked_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes("warehouse_approval_products", ("warehouse_approval_id", False), ("product_id", False))

    # -- Inventory ledger -------------------------------------------------

    op.create_table(
        "inventory",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_no", sa.String(64), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), nullable=False),
        sa.Column("current_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reserved_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("minimum_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("maximum_stock", sa.Integer(), nullable=True),
        sa.Column("reorder_level", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stock_status", sa.String(16), nullable=False, server_default="available"),
        sa.Column("zone", sa.String(32), nullable=True),
        sa.Column("rack", sa.String(32), nullable=True),
        sa.Column("shelf", sa.String(32), nullable=True),
        sa.Column("bin", sa.String(32), nullable=True),
        sa.Column("mfg_date", sa.Date(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("purchase_order_id", sa.Integer(), nullable=True),
        sa.Column("po_number", sa.String(32), nullable=True),
        sa.Column("invoice_receiving_id", sa.Integer(), nullable=True),
        sa.Column("invoice_number", sa.String(64), nullable=True),
        sa.Column("quality_control_id", sa.Integer(), nullable=True),
        sa.Column("qc_number", sa.String(32), nullable=True),
        sa.Column("warehouse_approval_id", sa.Integer(), nullable=True),
        sa.Column("wa_number", sa.String(32), nullable=True),
        sa.Column("source_inventory_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _ts("deleted_at", nullable=True),
        sa.Column("deleted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _ts("created_at", default_now=True),
        _ts("updated_at", default_now=True),
        sa.CheckConstraint("current_stock >= 0", name="ck_inventory_current_non_negative"),
        sa.CheckConstraint("reserved_stock >= 0", name="ck_inventory_reserved_non_negative"),
        sa.CheckConstraint("reserved_stock <= current_stock", name="ck_inventory_reserved_le_current"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["invoice_receiving_id"], ["invoice_receivings.id"]),
        sa.ForeignKeyConstraint(["quality_control_id"], ["quality_controls.id"]),
        sa.ForeignKeyConstraint(["warehouse_approval_id"], ["warehouse_approvals.id"]),
        sa.ForeignKeyConstraint(["source_inventory_id"], ["inventory.id"]),
        sa.ForeignKeyConstraint(["deleted_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "batch_no", "warehouse_id", name="uq_inventory_product_batch_warehouse"),
        sqlite_autoincrement=True,
    )
    _indexes(
        "inventory",
        ("product_id", False),
        ("warehouse_id", False),
        ("purchase_order_id", False),
        ("is_active", False),
    )
    op.create_index("ix_inventory_expiry", "inventory", ["expiry_date"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(16), nullable=False),
        sa.Column("quantity_delta", sa.Integer(), nullable=False),
        sa.Column("reserved_delta", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reserved_after", sa.Integer(), nullable=False),
        sa.Column("from_location", sa.String(128), nullable=True),
        sa.Column("to_location", sa.String(128), nullable=True),
        sa.Column("reference_type", sa.String(32), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("reference_line_id", sa.Integer(), nullable=True),
        sa.Column("transfer_ref", sa.String(36), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        _ts("occurred_at"),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventory.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_stock_movements_idempotency_key"),
        sqlite_autoincrement=True,
    )
    _indexes("stock_movements", ("inventory_id", False), ("movement_type", False), ("transfer_ref", False))
    op.create_index("ix_stock_movements_inventory_occurred", "stock_movements", ["inventory_id", "occurred_at"])
    op.create_index("ix_stock_movements_reference", "stock_movements", ["reference_type", "reference_id"])

    op.create_table(
        "stock_reservations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("reserved_qty", sa.Integer(), nullable=False),
        sa.Column("reserved_for", sa.String(128), nullable=False),
        sa.Column("reference_type", sa.String(32), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        _ts("expires_at", nullable=True),
        sa.Column("reserved_by_user_id", sa.Integer(), nullable=True),
        _ts("reserved_at"),
        sa.Column("closed_by_user_id", sa.Integer(), nullable=True),
        _ts("closed_at", nullable=True),
        sa.Column("close_reason", sa.String(255), nullable=True),
        sa.CheckConstraint("reserved_qty > 0", name="ck_reservation_qty_positive"),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventory.id"]),
        sa.ForeignKeyConstraint(["reserved_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["closed_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    _indexes("stock_reservations", ("inventory_id", False), ("status", False))
    op.create_index("ix_stock_reservations_inventory_status", "stock_reservations", ["inventory_id", "status"])

    op.create_table(
        "utilization_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("stock_movement_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("hospital_ref", sa.String(64), nullable=False),
        sa.Column("case_ref", sa.String(64), nullable=True),
        sa.Column("patient_ref", sa.String(64), nullable=True),
        sa.Column("doctor_ref", sa.String(64), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("utilized_by_user_id", sa.Integer(), nullable=True),
        _ts("utilized_at"),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventory.id"]),
        sa.ForeignKeyConstraint(["stock_movement_id"], ["stock_movements.id"]),
        sa.ForeignKeyConstraint(["utilized_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stock_movement_id", name="uq_utilization_records_stock_movement_id"),
        sqlite_autoincrement=True,
    )
    _indexes("utilization_records", ("inventory_id", False))


def downgrade():
    for table in (
        "utilization_records",
        "stock_reservations",
        "stock_movements",
        "inventory",
        "warehouse_approval_products",
        "warehouse_approvals",
        "qc_items",
        "qc_products",
        "quality_controls",
        "invoice_receiving_lines",
        "invoice_receivings",
        "workflow_history",
        "purchase_order_lines",
        "purchase_orders",
        "stage_permissions",
        "workflow_transitions",
        "workflow_stages",
        "principals",
        "warehouses",
        "products",
        "document_sequences",
        "audit_events",
        "security_events",
        "user_permission_overrides",
        "session_tokens",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
