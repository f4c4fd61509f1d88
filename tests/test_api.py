import uuid

from stockledger.models.project import Rack
from stockledger.services import stock_adjustment_service
from stockledger.services.rack_stock import current_stock

API = "/api/v1"


def _line(product, project, rack, quantity):
    return {"productId": product.id, "projectId": project.id, "rackId": rack.id, "quantity": quantity}


def _stock(db, rack, product):
    db.rollback()
    return current_stock(db.get(Rack, rack.id), product.id)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_authentication(client):
    assert client.get(f"{API}/stock-management").status_code == 401
    resp = client.get(f"{API}/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_login_sets_cookie(client, admin):
    resp = client.post(f"{API}/auth/login", json={"username": "admin", "password": "secret"})
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "admin"
    assert "token" in resp.cookies

    assert client.get(f"{API}/auth/me").json()["username"] == "admin"
    bad = client.post(f"{API}/auth/login", json={"username": "admin", "password": "wrong"})
    assert bad.status_code == 401


def test_admin_creates_user(client, admin, staff, headers):
    payload = {"username": "picker", "password": "pw", "email": "picker@example.com", "role": "keeper"}
    assert client.post(f"{API}/auth/users", json=payload, headers=headers(staff)).status_code == 403

    resp = client.post(f"{API}/auth/users", json=payload, headers=headers(admin))
    assert resp.status_code == 201
    assert resp.json()["role"] == "keeper"

    bad = client.post(f"{API}/auth/users", json={**payload, "username": "x", "role": "owner"}, headers=headers(admin))
    assert bad.status_code == 400


class TestStockManagement:
    def test_bad_items_return_details(self, client, admin, headers, project, rack, product):
        resp = client.post(
            f"{API}/stock-management",
            json={"type": "in", "items": [
                _line(product, project, rack, 1),
                {"productId": "abc", "projectId": project.id, "rackId": rack.id, "quantity": 1},
            ]},
            headers=headers(admin),
        )

        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert detail["code"] == "batch_validation_error"
        assert detail["details"] == [
            {"index": 1, "code": "invalid_id", "message": "Invalid productId: 'abc'"},
        ]

    def test_empty_items_rejected(self, client, admin, headers):
        resp = client.post(f"{API}/stock-management", json={"type": "in", "items": []}, headers=headers(admin))
        assert resp.status_code == 422

    def test_direct_in_updates_rack(self, client, db, admin, headers, project, rack, product, mailer):
        resp = client.post(
            f"{API}/stock-management",
            json={"type": "in", "items": [_line(product, project, rack, 10)], "supplierName": "Acme"},
            headers=headers(admin),
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "completed"
        assert body["direction"] == "in"
        assert (body["previous_stock"], body["new_stock"]) == (0, 10)

        view = client.get(f"{API}/racks/{rack.id}", headers=headers(admin)).json()
        assert view["products"] == [{"product_id": product.id, "stock": 10}]
        assert _stock(db, rack, product) == 10
        # background effects ran once the response was sent
        assert len(mailer.sent) == 1

        listed = client.get(f"{API}/stock-management", params={"rack_id": rack.id}, headers=headers(admin)).json()
        assert listed["total"] == 1
        assert listed["has_more"] is False

    def test_document_download(self, client, admin, headers, project, rack, product):
        txn = client.post(
            f"{API}/stock-management",
            json={"type": "in", "items": [_line(product, project, rack, 2)]},
            headers=headers(admin),
        ).json()

        resp = client.get(f"{API}/stock-management/{txn['id']}/document", headers=headers(admin))

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.content.startswith(b"%PDF")
        assert txn["transaction_code"] in resp.headers["content-disposition"]

    def test_unknown_transaction(self, client, admin, headers):
        resp = client.get(f"{API}/stock-management/{uuid.uuid4()}", headers=headers(admin))
        assert resp.status_code == 404


class TestOrders:
    def _order(self, client, headers, user, lines):
        resp = client.post(
            f"{API}/stock-management",
            json={"type": "out", "orderMode": True, "items": lines},
            headers=headers(user),
        )
        assert resp.status_code == 201
        return resp.json()

    def test_complete(self, client, db, staff, keeper, headers, project, stocked, product):
        rack, _ = stocked
        order = self._order(client, headers, staff, [_line(product, project, rack, 2)])
        assert order["status"] == "pending"

        denied = client.post(f"{API}/orders/{order['id']}/complete", headers=headers(staff))
        assert denied.status_code == 403

        resp = client.post(f"{API}/orders/{order['id']}/complete", headers=headers(keeper))
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Order completed successfully"
        assert body["transaction"]["status"] == "completed"
        assert body["document_available"] is True
        assert _stock(db, rack, product) == 3

        again = client.post(f"{API}/orders/{order['id']}/complete", headers=headers(keeper))
        assert again.status_code == 400

    def test_cancel(self, client, db, staff, manager, headers, project, stocked, product):
        rack, _ = stocked
        order = self._order(client, headers, staff, [_line(product, project, rack, 2)])

        assert client.post(f"{API}/orders/{order['id']}/cancel", headers=headers(manager)).status_code == 403
        resp = client.post(f"{API}/orders/{order['id']}/cancel", headers=headers(staff))
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert _stock(db, rack, product) == 5

    def test_unknown_order(self, client, keeper, headers):
        resp = client.post(f"{API}/orders/{uuid.uuid4()}/complete", headers=headers(keeper))
        assert resp.status_code == 404


class TestStockAdjustments:
    def _submit(self, client, headers, user, product, project, rack, **values):
        resp = client.post(
            f"{API}/stock-adjustment-requests",
            json={"productId": product.id, "projectId": project.id, "rackId": rack.id, "reason": "recount", **values},
            headers=headers(user),
        )
        assert resp.status_code == 201
        return resp.json()

    def test_approve_flow(self, client, db, admin, staff, headers, project, stocked, product):
        rack, _ = stocked
        req = self._submit(client, headers, staff, product, project, rack, stockOnHand=7, stockOnHold=2)
        assert req["current_rack_stock"] == 5

        assert client.post(f"{API}/stock-adjustment-requests/{req['id']}/approve", headers=headers(staff)).status_code == 403
        resp = client.post(f"{API}/stock-adjustment-requests/{req['id']}/approve", headers=headers(admin))
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"
        assert _stock(db, rack, product) == 7

        holds = client.get(f"{API}/stock-on-hold", params={"project_id": project.id}, headers=headers(admin)).json()
        assert [h["held_quantity"] for h in holds] == [2]
        rack_holds = client.get(f"{API}/rack-stock-on-hold", params={"rack_id": rack.id}, headers=headers(admin)).json()
        assert [h["held_quantity"] for h in rack_holds] == [2]

    def test_list_is_scoped_to_requester(self, client, admin, staff, keeper, headers, project, rack, product):
        self._submit(client, headers, staff, product, project, rack, stockOnHand=1)
        self._submit(client, headers, keeper, product, project, rack, stockOnHand=2)

        mine = client.get(f"{API}/stock-adjustment-requests", headers=headers(staff)).json()
        assert len(mine["requests"]) == 1
        everyone = client.get(f"{API}/stock-adjustment-requests", headers=headers(admin)).json()
        assert (len(everyone["requests"]), everyone["pending_count"]) == (2, 2)

    def test_failed_approval_returns_500(self, client, db, admin, staff, headers, project, stocked, product, monkeypatch):
        rack, _ = stocked
        req = self._submit(client, headers, staff, product, project, rack, stockOnHand=9)

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(stock_adjustment_service, "recompute_project_hold", broken)
        resp = client.post(f"{API}/stock-adjustment-requests/{req['id']}/approve", headers=headers(admin))

        assert resp.status_code == 500
        detail = resp.json()["detail"]
        assert detail["code"] == "inventory_update_failed"
        assert detail["request_status"] == "failed"
        assert _stock(db, rack, product) == 5


def test_feed_and_reports(client, admin, keeper, staff, headers, project, stocked, product):
    rack, _ = stocked
    client.post(
        f"{API}/stock-management",
        json={"type": "out", "orderMode": True, "items": [_line(product, project, rack, 1)]},
        headers=headers(staff),
    )

    feed = client.get(f"{API}/notifications", headers=headers(keeper)).json()
    assert [f["type"] for f in feed] == ["order_request"]
    inbox = client.get(f"{API}/notifications/inbox", headers=headers(keeper)).json()
    assert [n["type"] for n in inbox] == ["order_request"]

    counts = client.get(f"{API}/reports/pending-counts", headers=headers(admin)).json()
    assert counts["pending_orders"] == 1
