"""
Pytest fixtures for MediSupply backend tests.

Provides the app/database setup, seeded roles + workflow, one user per
default role, master data, and builders that drive a purchase order down
the PO -> invoice -> QC -> warehouse approval pipeline.
"""

import pytest

from medisupply import create_app
from medisupply.extensions import db
from medisupply.models import Principal, Product, Warehouse
from medisupply.permissions import DEFAULT_ROLES
from medisupply.services import (
    invoice_receiving_service,
    permission_service,
    purchase_order_service,
    quality_control_service,
    stage_permission_service,
    warehouse_approval_service,
    workflow_service,
)
from medisupply.services.auth_service import assign_role, create_default_roles, create_user

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table before the test; keep the schema."""
    db.session.remove()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def seed(db_session):
    """Roles, permissions, the PO workflow graph and default stage grants."""
    create_default_roles()
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions()
    workflow_service.load_workflow_definition()
    stage_permission_service.apply_stage_assignments()
    db_session.commit()


@pytest.fixture(scope='function')
def users(seed):
    """One active user per default role, keyed by role name."""
    created = {}
    for role_name, _ in DEFAULT_ROLES:
        user = create_user(role_name, f"{role_name}@medisupply.test", PASSWORD, bcrypt_rounds=4)
        assign_role(user.id, role_name)
        created[role_name] = user
    return created


@pytest.fixture(scope='function')
def masters(db_session):
    """Two products, two warehouses and a principal."""
    records = {
        "product": Product(code="AMOX500", name="Amoxicillin 500mg", unit="box"),
        "product_b": Product(code="PARA650", name="Paracetamol 650mg", unit="strip"),
        "w1": Warehouse(code="W1", name="Central Warehouse"),
        "w2": Warehouse(code="W2", name="North Depot"),
        "principal": Principal(code="PFZ", name="Pfizer Distribution"),
    }
    db_session.add_all(records.values())
    db_session.commit()
    return records


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(client, users):
    """headers_for("approver_l1") -> Authorization headers for that role's user."""
    cache = {}

    def _headers(role_name: str) -> dict:
        if role_name not in cache:
            cache[role_name] = auth_headers(get_auth_token(client, users[role_name].username))
        return cache[role_name]

    return _headers


# =============================================================================
# PIPELINE BUILDERS
# =============================================================================


@pytest.fixture(scope='function')
def make_po(db_session, users, masters):
    """Create a draft PO; one line of 10 x 1000 cents at 5% GST unless lines are given."""
    def _make(lines=None, actor=None):
        po = purchase_order_service.create_purchase_order(
            lines=lines or [{
                "product_id": masters["product"].id,
                "quantity": 10,
                "unit_price_cents": 1000,
                "gst_percentage": 5,
            }],
            actor=actor or users["procurement_officer"],
            principal_id=masters["principal"].id,
        )
        db_session.commit()
        return po

    return _make


@pytest.fixture(scope='function')
def ordered_po(db_session, users, make_po):
    """A PO walked through both approvals and sent to the principal."""
    def _ordered(lines=None):
        po = make_po(lines)
        steps = [
            ("submit", "procurement_officer"),
            ("approve", "approver_l1"),
            ("approve", "approver_l2"),
            ("send", "procurement_officer"),
        ]
        for action, role in steps:
            purchase_order_service.transition(po.id, action, {}, users[role])
            db_session.commit()
        return po

    return _ordered


@pytest.fixture(scope='function')
def received_invoice(db_session, users, masters, ordered_po):
    """An invoice receiving for an ordered PO; batch B-001 of each line's product."""
    def _invoice(lines=None, invoice_number="INV-1001"):
        po = ordered_po(lines)
        invoice = invoice_receiving_service.create_invoice_receiving(
            purchase_order_id=po.id,
            invoice_number=invoice_number,
            lines=[
                {
                    "product_id": line.product_id,
                    "received_qty": line.quantity,
                    "batch_number": f"B-{line.line_number:03d}",
                    "mfg_date": "2026-01-01",
                    "expiry_date": "2028-01-01",
                }
                for line in po.lines
            ],
            actor=users["warehouse_manager"],
        )
        db_session.commit()
        return invoice

    return _invoice


def inspect_all(qc, actor, status="passed", product_ids=None):
    """Record the same status on every item of the selected products."""
    for product in list(qc.products):
        if product_ids is not None and product.product_id not in product_ids:
            continue
        for item in list(product.items):
            quality_control_service.update_item_result(
                qc.id,
                qc_product_id=product.id,
                item_id=item.id,
                status=status,
                actor=actor,
                reasons=["damaged_product"] if status == "failed" else None,
            )


@pytest.fixture(scope='function')
def approved_qc(db_session, users, received_invoice):
    """A QC record whose every item passed, submitted and approved."""
    def _approved(lines=None):
        invoice = received_invoice(lines)
        inspector = users["qc_inspector"]
        qc = quality_control_service.create_qc(
            invoice_receiving_id=invoice.id,
            actor=inspector,
            assigned_to_user_id=inspector.id,
        )
        inspect_all(qc, inspector)
        quality_control_service.submit_qc(qc.id, actor=inspector)
        quality_control_service.approve_qc(qc.id, actor=users["qc_manager"])
        db_session.commit()
        return qc

    return _approved


@pytest.fixture(scope='function')
def submitted_wa(db_session, users, masters, approved_qc):
    """A warehouse approval accepting every QC-passed unit into W1, submitted."""
    def _submitted():
        qc = approved_qc()
        manager = users["warehouse_manager"]
        wa = warehouse_approval_service.create_warehouse_approval(
            quality_control_id=qc.id,
            warehouse_id=masters["w1"].id,
            actor=manager,
        )
        for line in list(wa.products):
            warehouse_approval_service.update_product_approval(
                wa.id, line.id,
                actor=manager,
                approved_qty=line.qc_passed_qty,
                location={"zone": "A", "rack": "R1", "shelf": "S1", "bin": "B1"},
            )
        warehouse_approval_service.submit_warehouse_approval(wa.id, actor=manager)
        db_session.commit()
        return wa

    return _submitted
