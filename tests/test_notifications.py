import json

import httpx

from stockledger.config import settings
from stockledger.schemas.stock_adjustment import StockAdjustmentCreate
from stockledger.schemas.transaction import StockMovementCreate
from stockledger.services import notification_service
from stockledger.services.notification_service import WebhookBroadcaster, broadcast, build_feed, list_inbox
from stockledger.services.order_service import cancel_order, complete_order
from stockledger.services.stock_adjustment_service import submit_request
from stockledger.services.transaction_service import create_movement


def _move(db, actor, direction, product, project, rack, qty, order_mode=False):
    data = StockMovementCreate(
        type=direction,
        items=[{"productId": product.id, "projectId": project.id, "rackId": rack.id, "quantity": qty}],
        orderMode=order_mode,
    )
    return create_movement(db, data, actor)


class TestBroadcast:
    def test_persists_and_delivers(self, db, broadcaster, keeper):
        note = broadcast(
            db, "order_request", "New Order Request", "DN-O-20260101-0001: 3 units",
            target_roles=["keeper"], priority="high", payload={"transactionId": "t-1"},
        )
        db.commit()

        assert json.loads(note.payload) == {"transactionId": "t-1"}
        message = broadcaster.delivered[0]
        assert message["id"] == note.id
        assert message["targetRoles"] == ["keeper"]
        assert message["notification"]["priority"] == "high"

    def test_inbox_matches_role_or_user(self, db, keeper, staff, manager):
        broadcast(db, "order_request", "a", "for keepers", target_roles=["keeper"])
        broadcast(db, "order_completed", "b", "for staff", target_users=[staff.id])
        db.commit()

        assert [n.message for n in list_inbox(db, keeper)] == ["for keepers"]
        assert [n.message for n in list_inbox(db, staff)] == ["for staff"]
        assert list_inbox(db, manager) == []


class TestWebhookBroadcaster:
    def test_no_urls_is_a_noop(self, monkeypatch):
        monkeypatch.setattr(settings, "BROADCAST_WEBHOOK_URLS", "")
        assert WebhookBroadcaster().deliver({"id": "n"}) == []

    def test_reports_per_url_results(self, monkeypatch):
        def handler(request):
            if request.url.host == "down.test":
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200)

        real_client = httpx.Client
        monkeypatch.setattr(settings, "BROADCAST_WEBHOOK_URLS", "https://up.test/hook, https://down.test/hook")
        monkeypatch.setattr(
            notification_service.httpx, "Client",
            lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
        )

        results = WebhookBroadcaster().deliver({"id": "n"})

        assert [(r["url"], r["success"]) for r in results] == [
            ("https://up.test/hook", True),
            ("https://down.test/hook", False),
        ]


class TestFeed:
    def test_pending_order_lists_each_item(self, db, admin, staff, keeper, manager, project, stocked, product):
        rack, rack2 = stocked
        data = StockMovementCreate(
            type="out",
            items=[
                {"productId": product.id, "projectId": project.id, "rackId": rack.id, "quantity": 1},
                {"productId": product.id, "projectId": project.id, "rackId": rack2.id, "quantity": 2},
            ],
            orderMode=True,
            invoiceNumber="PO-9",
        )
        txn = create_movement(db, data, staff)

        feed = build_feed(db, keeper)
        assert [f.type for f in feed] == ["order_request", "order_request"]
        assert all(f.entity_id == txn.id for f in feed)
        assert "(PO: PO-9)" in feed[0].description
        assert len(build_feed(db, staff)) == 2
        assert build_feed(db, manager) == []

    def test_completed_order_collapses_to_one_entry(self, db, staff, keeper, project, rack, product):
        txn = _move(db, staff, "in", product, project, rack, 4, order_mode=True)
        complete_order(db, txn.id, keeper)

        feed = build_feed(db, keeper)
        assert [(f.type, f.status) for f in feed] == [("order_completion", "completed")]
        assert feed[0].actor == "Keeper"
        assert feed[0].quantity == 4

    def test_cancelled_order(self, db, admin, staff, project, rack, product):
        txn = _move(db, staff, "in", product, project, rack, 4, order_mode=True)
        cancel_order(db, txn.id, staff)

        feed = build_feed(db, admin)
        assert [(f.type, f.actor) for f in feed] == [("order_cancelled", "Staff")]

    def test_direct_movements_visible_to_admin_and_actor(self, db, admin, keeper, manager, project, rack, product):
        _move(db, keeper, "in", product, project, rack, 3)

        assert [f.type for f in build_feed(db, admin)] == ["stock_in"]
        assert [f.type for f in build_feed(db, keeper)] == ["stock_in"]
        assert build_feed(db, manager) == []

    def test_adjustments_visible_to_project_members(
        self, db, staff, manager, keeper, project, rack, other_project, other_rack, product
    ):
        for proj, r in ((project, rack), (other_project, other_rack)):
            submit_request(db, StockAdjustmentCreate(
                productId=product.id, projectId=proj.id, rackId=r.id, stockOnHand=1, reason="recount",
            ), staff)

        manager_feed = build_feed(db, manager)
        assert [(f.type, f.project_name) for f in manager_feed] == [("adjustment_request", "North Site")]
        assert manager_feed[0].description == "Staff requested stock adjustment for Hex Bolt M10 in North Site"
        assert len(build_feed(db, staff)) == 2
