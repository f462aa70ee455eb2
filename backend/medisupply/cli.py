# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/medisupply/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--with-demo-users]
#   Idempotent bootstrap: tables, permissions, roles, workflow graph, stage assignments.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Workflow:
# - python -m flask workflow validate
#   Check the declarative workflow definition without touching the database.
# - python -m flask workflow setup
#   Validate and load the workflow graph, then apply default stage assignments.
# - python -m flask workflow show [--mermaid]
#   Print stages and transitions (or a Mermaid flowchart).
#
# Users:
# - python -m flask users create --username qc1 --email qc1@medisupply.local --role qc_inspector
# - python -m flask users list
#
# Permissions:
# - python -m flask perms list [--role approver_l1]
# - python -m flask perms grant <role> <PERMISSION_CODE>
# - python -m flask perms revoke <role> <PERMISSION_CODE>
# - python -m flask perms check <username> <PERMISSION_CODE>
# - python -m flask perms assign-stage PENDING_APPROVAL_L1 PO_APPROVE_L1 --role approver_l1
#   Stage-scoped grant to a role (or --user <username>), optional --expires-at.
#
# Inventory maintenance:
# - python -m flask inventory expire-reservations
#   Cancel active reservations past their expiry.
# - python -m flask inventory reconcile [--id 12]
#   Replay failed warehouse-approval postings (idempotent).

import click
from flask.cli import with_appcontext

from .errors import DomainError, WorkflowConfigurationError
from .extensions import db
from .models import User, Role, Permission, RolePermission
from .services.auth_service import create_user, create_default_roles, assign_role, PasswordValidationError
from .services import permission_service
from .services import stage_permission_service
from .services import workflow_service
from .services import inventory_service
from .services import warehouse_approval_service
from .permissions import DEFAULT_ROLES
from .time_utils import parse_iso_datetime
from .workflow_definition import PURCHASE_ORDER_WORKFLOW


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--with-demo-users', is_flag=True, help='Create one user per default role')
@with_appcontext
def init_system(with_demo_users):
    """
    Initialize the MediSupply backend.

    Creates (idempotent):
    - All tables (db.create_all; use `flask db upgrade` for migrated deployments)
    - Roles and permissions, with default role permissions
    - The purchase-order workflow graph
    - Default stage-scoped permission assignments

    With --with-demo-users, creates <role>/<role>@medisupply.local users with
    password "Password123!". Change them immediately outside development.
    """
    click.echo("START Initializing MediSupply...")

    db.create_all()

    click.echo("\nLIST Creating roles...")
    created_roles = create_default_roles()
    click.echo(f"PASS Roles created: {created_roles} (total {db.session.query(Role).count()})")

    click.echo("\nSECURITY Initializing permissions...")
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    click.echo("\nWORKFLOW Loading workflow definition...")
    try:
        stats = workflow_service.load_workflow_definition()
    except WorkflowConfigurationError as e:
        click.echo("FAIL Workflow definition is invalid:")
        for problem in e.problems:
            click.echo(f"   - {problem}")
        raise SystemExit(1)
    click.echo(f"PASS Workflow {PURCHASE_ORDER_WORKFLOW.version}: {stats}")

    stage_count = stage_permission_service.apply_stage_assignments()
    click.echo(f"PASS Created {stage_count} stage permission assignments")

    if with_demo_users:
        click.echo("\nUSERS Creating demo users...")
        for role_name, _ in DEFAULT_ROLES:
            if db.session.query(User).filter_by(username=role_name).first():
                click.echo(f"WARN  User '{role_name}' already exists, skipping...")
                continue
            try:
                user = create_user(role_name, f"{role_name}@medisupply.local", "Password123!")
                assign_role(user.id, role_name)
                click.echo(f"PASS Created user: {role_name} with role '{role_name}'")
            except (ValueError, PasswordValidationError) as e:
                click.echo(f"FAIL Failed to create user '{role_name}': {e}")

    click.echo("\n" + "=" * 60)
    click.echo("DONE MediSupply initialized")
    click.echo("=" * 60)


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

@click.group('workflow')
def workflow_group():
    """Workflow definition commands."""


@workflow_group.command('validate')
def validate_workflow_cli():
    """Validate the declarative workflow definition (no database access)."""
    problems = workflow_service.validate_definition(PURCHASE_ORDER_WORKFLOW)
    if problems:
        click.echo(f"FAIL {len(problems)} problem(s) in workflow {PURCHASE_ORDER_WORKFLOW.version}:")
        for problem in problems:
            click.echo(f"   - {problem}")
        raise SystemExit(1)
    click.echo(
        f"PASS Workflow {PURCHASE_ORDER_WORKFLOW.version} is valid "
        f"({len(PURCHASE_ORDER_WORKFLOW.stages)} stages, {len(PURCHASE_ORDER_WORKFLOW.transitions)} transitions)"
    )


@workflow_group.command('setup')
@with_appcontext
def setup_workflow_cli():
    """Load the workflow graph and apply default stage assignments."""
    try:
        stats = workflow_service.load_workflow_definition()
    except WorkflowConfigurationError as e:
        click.echo("FAIL Workflow definition is invalid:")
        for problem in e.problems:
            click.echo(f"   - {problem}")
        raise SystemExit(1)

    created = stage_permission_service.apply_stage_assignments()
    click.echo(f"PASS Workflow {PURCHASE_ORDER_WORKFLOW.version} loaded: {stats}")
    click.echo(f"PASS Created {created} stage permission assignments")


@workflow_group.command('show')
@click.option('--mermaid', is_flag=True, help='Print a Mermaid flowchart instead of a table')
@with_appcontext
def show_workflow_cli(mermaid):
    """Print the loaded stages and transitions."""
    graph = workflow_service.visualize()
    if mermaid:
        click.echo(graph["mermaid"])
        return

    click.echo(f"\n{'Seq':<5} {'Stage':<22} {'Flags':<10} {'Actions'}")
    click.echo("-" * 80)
    for node in graph["nodes"]:
        flags = "initial" if node["is_initial"] else ("terminal" if node["is_terminal"] else "")
        click.echo(f"{node['sequence']:<5} {node['code']:<22} {flags:<10} {', '.join(node['allowed_actions'])}")

    click.echo(f"\n{'From':<22} {'Action':<16} {'To':<22} {'Required fields'}")
    click.echo("-" * 80)
    for edge in graph["edges"]:
        click.echo(f"{edge['from']:<22} {edge['action']:<16} {edge['to']:<22} {', '.join(edge['required_fields'])}")
    click.echo("")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--full-name', default=None, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([name for name, _ in DEFAULT_ROLES]), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, email, full_name, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(username, email, password, full_name)
        assign_role(user.id, role)
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {e}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<32} {'Active':<8} {'Roles'}")
    click.echo("=" * 90)

    for user in users:
        roles_str = ", ".join(permission_service.get_user_role_names(user.id)) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<32} {active_str:<8} {roles_str}")

    click.echo("=" * 90 + "\n")


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------

@click.group('perms')
def perms_group():
    """Permission inspection and repair commands."""


@perms_group.command('list')
@click.option('--role', help='Filter by role name')
@with_appcontext
def list_permissions_cli(role):
    """List permissions, optionally only those granted to a role."""
    query = db.session.query(Permission).order_by(Permission.category, Permission.code)
    if role:
        role_obj = db.session.query(Role).filter_by(name=role).first()
        if not role_obj:
            click.echo(f"FAIL Role '{role}' not found")
            return
        query = query.join(RolePermission, RolePermission.permission_id == Permission.id).filter(
            RolePermission.role_id == role_obj.id
        )

    perms = query.all()
    current_category = None
    for perm in perms:
        if perm.category != current_category:
            click.echo(f"\nCATEGORY {perm.category}")
            click.echo("-" * 80)
            current_category = perm.category
        click.echo(f"  {perm.code:<28} {perm.name}")

    click.echo(f"\n Total: {len(perms)} permissions\n")


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def grant_permission_cli(role_name, permission_code):
    """Grant a global permission to a role."""
    try:
        permission_service.grant_permission_to_role(role_name, permission_code)
        click.echo(f"PASS Granted '{permission_code}' to role '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {e}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def revoke_permission_cli(role_name, permission_code):
    """Revoke a global permission from a role."""
    try:
        revoked = permission_service.revoke_permission_from_role(role_name, permission_code)
        if revoked:
            click.echo(f"PASS Revoked '{permission_code}' from role '{role_name}'")
        else:
            click.echo(f"WARN  Permission '{permission_code}' was not granted to '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {e}")


@perms_group.command('override')
@click.argument('username')
@click.argument('permission_code')
@click.option('--deny', is_flag=True, help='Deny instead of grant')
@click.option('--revoke', is_flag=True, help='Remove the active override')
@click.option('--reason', default=None)
@with_appcontext
def override_permission_cli(username, permission_code, deny, revoke, reason):
    """Grant, deny or clear a per-user permission override."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    try:
        if revoke:
            override = permission_service.revoke_permission_override(
                user_id=user.id, permission_code=permission_code, revoked_by_user_id=None,
            )
            if override:
                click.echo(f"PASS Cleared override of '{permission_code}' for '{username}'")
            else:
                click.echo(f"WARN  No active override of '{permission_code}' for '{username}'")
            return

        override_type = "DENY" if deny else "GRANT"
        permission_service.grant_permission_override(
            user_id=user.id,
            permission_code=permission_code,
            granted_by_user_id=None,
            override_type=override_type,
            reason=reason,
        )
        click.echo(f"PASS {override_type} '{permission_code}' for '{username}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {e}")


@perms_group.command('check')
@click.argument('username')
@click.argument('permission_code')
@with_appcontext
def check_permission_cli(username, permission_code):
    """Check a user's global permission and list the stages where it applies."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    if permission_service.user_has_permission(user.id, permission_code):
        click.echo(f"PASS User '{username}' HAS global permission '{permission_code}'")
    else:
        click.echo(f"INFO User '{username}' does not have global permission '{permission_code}'")

    stages = [
        stage.code for stage in workflow_service.list_stages()
        if permission_code in workflow_service.effective_permissions(user.id, stage)
    ]
    click.echo(f"Effective at stages: {', '.join(stages) if stages else 'none'}")


@perms_group.command('assign-stage')
@click.argument('stage_code')
@click.argument('permission_code')
@click.option('--role', 'role_name', help='Role to grant to')
@click.option('--user', 'username', help='Username to grant to')
@click.option('--expires-at', default=None, help='ISO-8601 expiry (UTC)')
@with_appcontext
def assign_stage_permission_cli(stage_code, permission_code, role_name, username, expires_at):
    """Grant a permission at one workflow stage to a role or a user."""
    user_id = None
    if username:
        user = db.session.query(User).filter_by(username=username).first()
        if not user:
            click.echo(f"FAIL User '{username}' not found")
            return
        user_id = user.id

    try:
        assignment = stage_permission_service.assign_stage_permission(
            stage_code=stage_code,
            permission_code=permission_code,
            user_id=user_id,
            role_name=role_name,
            expires_at=parse_iso_datetime(expires_at),
        )
        db.session.commit()
        click.echo(f"PASS Stage permission #{assignment.id}: {permission_code} at {stage_code} "
                   f"-> {role_name or username}")
    except ValueError as e:
        db.session.rollback()
        click.echo(f"FAIL Error: {e}")
    except DomainError as e:
        db.session.rollback()
        click.echo(f"FAIL Error: {e.message}")


# ---------------------------------------------------------------------------
# Inventory maintenance
# ---------------------------------------------------------------------------

@click.group('inventory')
def inventory_group():
    """Inventory maintenance commands."""


@inventory_group.command('expire-reservations')
@with_appcontext
def expire_reservations_cli():
    """Cancel active reservations whose expiry has passed."""
    count = inventory_service.expire_reservations()
    db.session.commit()
    click.echo(f"PASS Expired {count} reservation(s)")


@inventory_group.command('reconcile')
@click.option('--id', 'wa_id', type=int, default=None, help='Only this warehouse approval')
@with_appcontext
def reconcile_inventory_cli(wa_id):
    """Replay inventory posting for approved warehouse approvals that did not complete."""
    targets = [wa_id] if wa_id else [wa.id for wa in warehouse_approval_service.pending_integrations()]
    if not targets:
        click.echo("PASS Nothing to reconcile")
        return

    failed = 0
    for target in targets:
        try:
            wa = warehouse_approval_service.reconcile_inventory(target)
            click.echo(f"PASS {wa.wa_number}: {wa.inventory_integration_status}")
        except DomainError as e:
            db.session.rollback()
            failed += 1
            click.echo(f"FAIL Warehouse approval {target}: {e.message}")

    if failed:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(workflow_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(inventory_group)
