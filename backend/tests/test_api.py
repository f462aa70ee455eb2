"""
HTTP surface tests.

Verifies:
- Unauthenticated requests get 401, missing permissions 403
- DomainError kinds map to status codes (404, 409, 400, 207)
- List endpoints return {items, count, limit, offset}
- Ids in request bodies are coerced strictly (numeric strings pass, "1.5" is a 400)
- Bulk assignment, workload, statistics and dashboard endpoints
"""

from conftest import auth_headers, get_auth_token

from medisupply.services import inventory_service, quality_control_service, warehouse_approval_service


class TestAuthentication:

    def test_health_is_public(self, client, seed):
        response = client.get('/health')
        assert response.status_code == 200
        assert set(response.json["checks"]) == {"database", "auth", "workflow"}

    def test_protected_route_requires_token(self, client, seed):
        response = client.get('/api/purchase-orders')
        assert response.status_code == 401

    def test_invalid_token_rejected(self, client, seed):
        response = client.get('/api/purchase-orders', headers=auth_headers("not-a-token"))
        assert response.status_code == 401

    def test_login_and_me(self, client, users):
        token = get_auth_token(client, "approver_l1")
        assert token

        response = client.get('/api/auth/me', headers=auth_headers(token))
        assert response.status_code == 200
        assert response.json["roles"] == ["approver_l1"]
        assert "PO_VIEW" in response.json["permissions"]

    def test_wrong_password(self, client, users):
        response = client.post('/api/auth/login', json={"username": "viewer", "password": "nope"})
        assert response.status_code == 401

    def test_logout_revokes_token(self, client, users):
        headers = auth_headers(get_auth_token(client, "viewer"))
        assert client.post('/api/auth/logout', headers=headers).status_code == 200
        assert client.get('/api/auth/me', headers=headers).status_code == 401


class TestPurchaseOrderApi:

    def test_create_requires_permission(self, client, headers_for, masters):
        response = client.post('/api/purchase-orders', headers=headers_for("viewer"), json={
            "lines": [{"product_id": masters["product"].id, "quantity": 1, "unit_price_cents": 100}],
        })
        assert response.status_code == 403
        assert response.json["required_permission"] == "PO_CREATE"

    def test_create_list_and_act(self, client, headers_for, masters):
        officer = headers_for("procurement_officer")
        response = client.post('/api/purchase-orders', headers=officer, json={
            "principal_id": masters["principal"].id,
            "lines": [{"product_id": masters["product"].id, "quantity": 2, "unit_price_cents": 1500}],
        })
        assert response.status_code == 201
        po = response.json
        assert po["status"] == "draft"
        assert po["grand_total_cents"] == 3000
        assert po["available_actions"] == ["edit", "submit", "cancel"]

        listing = client.get('/api/purchase-orders', headers=officer)
        assert listing.status_code == 200
        assert listing.json["count"] == 1
        assert [item["id"] for item in listing.json["items"]] == [po["id"]]

        response = client.post(f'/api/purchase-orders/{po["id"]}/actions/submit', headers=officer, json={})
        assert response.status_code == 200
        assert response.json["status"] == "pending_approval_l1"

        history = client.get(f'/api/purchase-orders/{po["id"]}/history', headers=officer)
        assert [e["action"] for e in history.json["items"]] == ["create", "submit"]

    def test_invalid_action_is_409(self, client, headers_for, make_po):
        po = make_po()
        response = client.post(
            f'/api/purchase-orders/{po.id}/actions/send', headers=headers_for("admin"), json={},
        )
        assert response.status_code == 409
        assert response.json["kind"] == "invalid_transition"

    def test_stage_permission_gap_is_403(self, client, headers_for, make_po):
        po = make_po()
        response = client.post(
            f'/api/purchase-orders/{po.id}/actions/submit', headers=headers_for("approver_l1"), json={},
        )
        assert response.status_code == 403
        assert response.json["missing_permissions"] == ["PO_EDIT"]

    def test_missing_field_is_400(self, client, headers_for, make_po):
        po = make_po()
        response = client.post(
            f'/api/purchase-orders/{po.id}/actions/cancel', headers=headers_for("procurement_officer"), json={},
        )
        assert response.status_code == 400
        assert response.json["field"] == "remarks"

    def test_unknown_po_is_404(self, client, headers_for):
        response = client.get('/api/purchase-orders/9999', headers=headers_for("viewer"))
        assert response.status_code == 404


class TestWarehouseAndInventoryApi:

    def test_failed_posting_returns_207(self, client, headers_for, submitted_wa, users, masters, db_session):
        clerk = users["inventory_clerk"]
        blocker = inventory_service.create_inventory(
            product_id=masters["product"].id, batch_no="B-001", warehouse_id=masters["w1"].id, actor=clerk,
        )
        inventory_service.soft_delete(blocker.id, actor=clerk)
        db_session.commit()
        wa = submitted_wa()

        manager = headers_for("warehouse_manager")
        response = client.post(f'/api/warehouse-approvals/{wa.id}/approve', headers=manager, json={})
        assert response.status_code == 207
        assert response.json["kind"] == "partial_success"
        assert response.json["resource"]["status"] == "approved"
        assert response.json["resource"]["inventory_integration_status"] == "failed"

        inventory_service.restore(blocker.id, actor=clerk)
        db_session.commit()
        response = client.post(f'/api/warehouse-approvals/{wa.id}/reconcile', headers=manager)
        assert response.status_code == 200
        assert response.json["inventory_integration_status"] == "completed"

    def test_insufficient_stock_is_409(self, client, headers_for, users, masters, db_session):
        record = inventory_service.create_inventory(
            product_id=masters["product"].id, batch_no="LOT-1", warehouse_id=masters["w1"].id,
            actor=users["inventory_clerk"], quantity=5,
        )
        db_session.commit()

        response = client.post(
            f'/api/inventory/{record.id}/stock/remove',
            headers=headers_for("inventory_clerk"), json={"quantity": 6},
        )
        assert response.status_code == 409
        assert response.json["kind"] == "insufficient_stock"
        assert (response.json["requested"], response.json["available"]) == (6, 5)

    def test_viewer_cannot_adjust(self, client, headers_for, users, masters, db_session):
        record = inventory_service.create_inventory(
            product_id=masters["product"].id, batch_no="LOT-1", warehouse_id=masters["w1"].id,
            actor=users["inventory_clerk"], quantity=5,
        )
        db_session.commit()

        response = client.post(
            f'/api/inventory/{record.id}/stock/adjust',
            headers=headers_for("viewer"), json={"delta": 1, "reason": "count"},
        )
        assert response.status_code == 403

    def test_failed_commit_is_conflict_not_success(self, client, headers_for, users, masters, db_session, monkeypatch):
        from sqlalchemy.exc import OperationalError
        from sqlalchemy.orm import Session

        from medisupply.models import Inventory, StockMovement

        record = inventory_service.create_inventory(
            product_id=masters["product"].id, batch_no="LOT-1", warehouse_id=masters["w1"].id,
            actor=users["inventory_clerk"], quantity=5,
        )
        db_session.commit()
        record_id = record.id
        movements = db_session.query(StockMovement).filter_by(inventory_id=record_id).count()
        headers = headers_for("inventory_clerk")

        real_add, real_commit = inventory_service.add_stock, Session.commit
        state = {"armed": False}

        def add_stock(*args, **kwargs):
            movement = real_add(*args, **kwargs)
            state["armed"] = True
            return movement

        def commit(session):
            if state["armed"]:
                state["armed"] = False
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            return real_commit(session)

        monkeypatch.setattr(inventory_service, "add_stock", add_stock)
        monkeypatch.setattr(Session, "commit", commit)

        response = client.post(f'/api/inventory/{record_id}/stock/add', headers=headers, json={"quantity": 7})
        assert response.status_code == 409
        assert response.json["kind"] == "conflict"
        assert response.json["retryable"] is True

        monkeypatch.undo()
        db_session.expire_all()
        assert db_session.get(Inventory, record_id).current_stock == 5
        assert db_session.query(StockMovement).filter_by(inventory_id=record_id).count() == movements


class TestQualityControlApi:

    def _open_qc(self, received_invoice, users, db_session):
        inspector = users["qc_inspector"]
        qc = quality_control_service.create_qc(
            invoice_receiving_id=received_invoice().id, actor=inspector, assigned_to_user_id=inspector.id,
        )
        db_session.commit()
        return qc

    def test_item_ids_given_as_strings(self, client, headers_for, received_invoice, users, db_session):
        qc = self._open_qc(received_invoice, users, db_session)
        product = qc.products[0]
        qc_id, product_id, item_id = qc.id, product.id, product.items[0].id
        headers = headers_for("qc_inspector")

        response = client.put(f'/api/quality-control/{qc_id}/items', headers=headers, json={
            "results": [{"qc_product_id": str(product_id), "item_id": f" {item_id} ", "status": "passed"}],
        })
        assert response.status_code == 200
        assert response.json["status"] == "in_progress"

        response = client.put(f'/api/quality-control/{qc_id}/items', headers=headers, json={
            "qc_product_id": product_id, "item_id": "1.5", "status": "passed",
        })
        assert response.status_code == 400
        assert "results[0].item_id" in response.json["error"]

    def test_bulk_assign_and_workload(self, client, headers_for, received_invoice, users, db_session):
        qc_id = self._open_qc(received_invoice, users, db_session).id
        body = {"qc_ids": [qc_id], "assigned_to_user_id": users["qc_manager"].id, "priority": "high"}

        response = client.post('/api/quality-control/bulk-assign', headers=headers_for("qc_inspector"), json=body)
        assert response.status_code == 403

        response = client.post('/api/quality-control/bulk-assign', headers=headers_for("qc_manager"), json=body)
        assert response.status_code == 200
        assert response.json == {"assigned": [qc_id], "skipped": []}

        response = client.get('/api/quality-control/workload', headers=headers_for("qc_inspector"))
        assert response.status_code == 200
        assert [(w["username"], w["high_priority"]) for w in response.json["items"]] == [("qc_manager", 1)]

    def test_bulk_assign_rejects_bad_ids(self, client, headers_for, users, seed):
        response = client.post('/api/quality-control/bulk-assign', headers=headers_for("qc_manager"), json={
            "qc_ids": ["x"], "assigned_to_user_id": users["qc_manager"].id,
        })
        assert response.status_code == 400


class TestWarehouseApprovalReportsApi:

    def test_assign_statistics_and_dashboard(self, client, headers_for, approved_qc, users, masters, db_session):
        manager = users["warehouse_manager"]
        wa = warehouse_approval_service.create_warehouse_approval(
            quality_control_id=approved_qc().id, warehouse_id=masters["w1"].id, actor=manager,
        )
        db_session.commit()
        wa_id = wa.id
        headers = headers_for("warehouse_manager")

        response = client.post(f'/api/warehouse-approvals/{wa_id}/assign', headers=headers,
                               json={"assigned_to_user_id": manager.id})
        assert response.status_code == 200
        assert response.json["assigned_to_user_id"] == manager.id

        response = client.get('/api/warehouse-approvals/statistics?date_from=2026-01-01', headers=headers)
        assert response.status_code == 200
        assert response.json["total"] == 1

        response = client.get('/api/warehouse-approvals/statistics?date_from=nope', headers=headers)
        assert response.status_code == 400

        response = client.get('/api/warehouse-approvals/dashboard', headers=headers)
        assert response.status_code == 200
        assert [r["id"] for r in response.json["recent"]] == [wa_id]

        response = client.get('/api/warehouse-approvals/workload', headers=headers)
        assert [(w["user_id"], w["total"]) for w in response.json["items"]] == [(manager.id, 1)]

    def test_bulk_assign_requires_approve_permission(self, client, headers_for, users, seed):
        response = client.post('/api/warehouse-approvals/bulk-assign', headers=headers_for("viewer"), json={
            "warehouse_approval_ids": [1], "assigned_to_user_id": users["viewer"].id,
        })
        assert response.status_code == 403


class TestInventoryReportsApi:

    def test_statistics(self, client, headers_for, users, masters, db_session):
        inventory_service.create_inventory(
            product_id=masters["product"].id, batch_no="LOT-1", warehouse_id=masters["w1"].id,
            actor=users["inventory_clerk"], quantity=5, unit_cost_cents=100,
        )
        db_session.commit()

        response = client.get('/api/inventory/statistics', headers=headers_for("viewer"))
        assert response.status_code == 200
        assert (response.json["records"], response.json["total_value_cents"]) == (1, 500)
        assert response.json["by_stock_status"]["available"]["units"] == 5

    def test_bulk_settings(self, client, headers_for, users, masters, db_session):
        record = inventory_service.create_inventory(
            product_id=masters["product"].id, batch_no="LOT-1", warehouse_id=masters["w1"].id,
            actor=users["inventory_clerk"], quantity=5,
        )
        db_session.commit()
        body = {"inventory_ids": [record.id], "changes": {"minimum_stock": 2}}

        response = client.post('/api/inventory/bulk-settings', headers=headers_for("viewer"), json=body)
        assert response.status_code == 403

        response = client.post('/api/inventory/bulk-settings', headers=headers_for("inventory_clerk"), json=body)
        assert response.status_code == 200
        assert response.json == {"updated": [record.id], "skipped": []}
