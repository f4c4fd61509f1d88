import json

import pytest
from sqlalchemy.orm import sessionmaker

from stockledger.errors import NotFound, PermissionDenied, TransitionError
from stockledger.models.activity import ActivityLog
from stockledger.models.notification import Notification
from stockledger.models.project import Rack
from stockledger.models.transaction import StockTransaction, TransactionStatus
from stockledger.schemas.transaction import StockMovementCreate
from stockledger.services import order_service
from stockledger.services.order_service import cancel_order, complete_order
from stockledger.services.rack_stock import current_stock, set_stock
from stockledger.services.transaction_service import create_movement


def _order(db, actor, direction, lines, order_mode=True):
    items = [
        {"productId": product.id, "projectId": project.id, "rackId": rack.id, "quantity": qty}
        for product, project, rack, qty in lines
    ]
    return create_movement(db, StockMovementCreate(type=direction, items=items, orderMode=order_mode), actor)


def _stock(db, rack, product):
    db.expire_all()
    return current_stock(db.get(Rack, rack.id), product.id)


class TestComplete:
    def test_applies_stock_once(self, db, staff, keeper, project, rack, product):
        txn = _order(db, staff, "in", [(product, project, rack, 10)])
        assert _stock(db, rack, product) == 0

        result = complete_order(db, txn.id, keeper)

        assert result.transaction.status == TransactionStatus.COMPLETED
        assert result.transaction.completed_by == keeper.id
        assert result.warnings == []
        assert result.document.startswith(b"%PDF")
        assert (result.transaction.previous_stock, result.transaction.new_stock) == (0, 10)
        assert _stock(db, rack, product) == 10

        with pytest.raises(TransitionError):
            complete_order(db, txn.id, keeper)
        assert _stock(db, rack, product) == 10

    @pytest.mark.parametrize("role_user", ["admin", "manager", "staff"])
    def test_only_completion_role_may_complete(self, db, request, staff, project, rack, product, role_user):
        actor = request.getfixturevalue(role_user)
        txn = _order(db, staff, "in", [(product, project, rack, 1)])

        with pytest.raises(PermissionDenied):
            complete_order(db, txn.id, actor)
        assert _stock(db, rack, product) == 0

    def test_unknown_or_direct_transaction(self, db, admin, keeper, project, rack, product):
        with pytest.raises(NotFound):
            complete_order(db, "00000000-0000-0000-0000-000000000000", keeper)

        direct = _order(db, admin, "in", [(product, project, rack, 1)], order_mode=False)
        with pytest.raises(TransitionError):
            complete_order(db, direct.id, keeper)

    def test_partial_failure_completes_with_warning(self, db, staff, keeper, project, stocked, product):
        rack, rack2 = stocked
        txn = _order(db, staff, "out", [(product, project, rack, 2), (product, project, rack2, 3)])
        set_stock(db, rack2.id, product.id, 1)
        db.commit()

        result = complete_order(db, txn.id, keeper)

        assert result.transaction.status == TransactionStatus.COMPLETED
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("Hex Bolt M10 (A2): Insufficient stock")
        assert result.transaction.warning_list == result.warnings
        assert _stock(db, rack, product) == 3
        assert _stock(db, rack2, product) == 1

    def test_no_item_applied_still_completes(self, db, staff, keeper, project, stocked, product):
        rack, _ = stocked
        txn = _order(db, staff, "out", [(product, project, rack, 3)])
        set_stock(db, rack.id, product.id, 0)
        db.commit()

        result = complete_order(db, txn.id, keeper)

        assert result.transaction.status == TransactionStatus.COMPLETED
        assert result.transaction.completed_by == keeper.id
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("Hex Bolt M10 (A1): Insufficient stock")
        assert _stock(db, rack, product) == 0

    def test_document_failure_does_not_block_completion(self, db, staff, keeper, project, rack, product, monkeypatch):
        def broken(txn):
            raise OSError("no fonts")

        monkeypatch.setattr(order_service, "render_delivery_document", broken)
        txn = _order(db, staff, "in", [(product, project, rack, 4)])

        result = complete_order(db, txn.id, keeper)

        assert result.transaction.status == TransactionStatus.COMPLETED
        assert result.document is None
        assert _stock(db, rack, product) == 4

    def test_completion_effects(self, db, admin, staff, keeper, project, rack, product, effects, run_effects, mailer):
        txn = _order(db, staff, "in", [(product, project, rack, 6)])
        complete_order(db, txn.id, keeper, effects)
        assert effects.pending == [
            "order_completion_activity", "order_completion_notification", "order_completion_email",
        ]
        run_effects()

        actions = sorted(l.action for l in db.query(ActivityLog).all())
        assert actions == ["order_completed", "order_completed"]
        note = db.query(Notification).one()
        assert note.type == "order_completed"
        assert json.loads(note.target_users) == [staff.id]
        assert [m["subject"] for m in mailer.sent] == [f"Goods received note {txn.transaction_code}"]

    def test_order_with_only_warnings_is_still_mailed(
        self, db, staff, keeper, project, stocked, product, effects, run_effects, mailer
    ):
        rack, _ = stocked
        txn = _order(db, staff, "out", [(product, project, rack, 3)])
        set_stock(db, rack.id, product.id, 0)
        db.commit()

        complete_order(db, txn.id, keeper, effects)
        run_effects()

        note = db.query(Notification).one()
        assert note.type == "order_completed"
        assert json.loads(note.payload)["warnings"][0].startswith("Hex Bolt M10 (A1)")
        assert [m["subject"] for m in mailer.sent] == [f"Delivery note {txn.transaction_code}"]


class TestCancel:
    @pytest.mark.parametrize("role_user", ["admin", "keeper", "staff"])
    def test_allowed_actors(self, db, request, staff, project, rack, product, role_user):
        actor = request.getfixturevalue(role_user)
        txn = _order(db, staff, "in", [(product, project, rack, 5)])

        cancelled = cancel_order(db, txn.id, actor)

        assert cancelled.status == TransactionStatus.CANCELLED
        assert cancelled.cancelled_by == actor.id
        assert _stock(db, rack, product) == 0

    def test_other_users_may_not_cancel(self, db, staff, manager, project, rack, product):
        txn = _order(db, staff, "in", [(product, project, rack, 5)])
        with pytest.raises(PermissionDenied):
            cancel_order(db, txn.id, manager)

    def test_completed_order_cannot_be_cancelled(self, db, staff, keeper, project, rack, product):
        txn = _order(db, staff, "in", [(product, project, rack, 5)])
        complete_order(db, txn.id, keeper)

        with pytest.raises(TransitionError):
            cancel_order(db, txn.id, keeper)

    def test_cancelled_order_cannot_be_completed(self, db, staff, keeper, project, rack, product):
        txn = _order(db, staff, "in", [(product, project, rack, 1)])
        cancel_order(db, txn.id, keeper)

        with pytest.raises(TransitionError):
            complete_order(db, txn.id, keeper)
        assert _stock(db, rack, product) == 0

    def test_cancel_effects(self, db, staff, project, rack, product, effects, run_effects, mailer):
        txn = _order(db, staff, "in", [(product, project, rack, 1)])
        cancel_order(db, txn.id, staff, effects)
        run_effects()

        assert db.query(Notification).one().type == "order_cancelled"
        assert {l.action for l in db.query(ActivityLog).all()} == {"order_cancelled"}
        assert mailer.sent == []


class TestConcurrentClose:
    """A second handler holding the same pending order must not close it again."""

    @pytest.fixture
    def racer(self, engine):
        session = sessionmaker(bind=engine, expire_on_commit=False)()
        yield session
        session.close()

    def _interleave(self, monkeypatch, winner_action):
        real_load = order_service._load_order
        loaded = []

        def load(session, txn_id):
            txn = real_load(session, txn_id)
            if not loaded:
                loaded.append(txn_id)
                txn.items
                # the order is now in memory as pending; let another handler close it
                session.commit()
                winner_action(txn_id)
            return txn

        monkeypatch.setattr(order_service, "_load_order", load)

    def _status(self, db, txn):
        db.rollback()
        return db.get(StockTransaction, txn.id).status

    def test_double_completion_applies_stock_once(
        self, db, racer, session_factory, staff, keeper, project, rack, product, monkeypatch
    ):
        txn = _order(db, staff, "in", [(product, project, rack, 10)])

        def complete_elsewhere(txn_id):
            with session_factory() as other:
                complete_order(other, txn_id, keeper)

        self._interleave(monkeypatch, complete_elsewhere)
        with pytest.raises(TransitionError):
            complete_order(racer, txn.id, keeper)

        assert self._status(db, txn) == TransactionStatus.COMPLETED
        assert _stock(db, rack, product) == 10

    def test_cancel_loses_to_completion(
        self, db, racer, session_factory, staff, keeper, project, rack, product, monkeypatch
    ):
        txn = _order(db, staff, "in", [(product, project, rack, 10)])

        def complete_elsewhere(txn_id):
            with session_factory() as other:
                complete_order(other, txn_id, keeper)

        self._interleave(monkeypatch, complete_elsewhere)
        with pytest.raises(TransitionError):
            cancel_order(racer, txn.id, staff)

        assert self._status(db, txn) == TransactionStatus.COMPLETED
        assert _stock(db, rack, product) == 10

    def test_completion_loses_to_cancel(
        self, db, racer, session_factory, staff, keeper, project, rack, product, monkeypatch
    ):
        txn = _order(db, staff, "in", [(product, project, rack, 10)])

        def cancel_elsewhere(txn_id):
            with session_factory() as other:
                cancel_order(other, txn_id, staff)

        self._interleave(monkeypatch, cancel_elsewhere)
        with pytest.raises(TransitionError):
            complete_order(racer, txn.id, keeper)

        assert self._status(db, txn) == TransactionStatus.CANCELLED
        assert _stock(db, rack, product) == 0
