"""Rack stock matcher and updater.

Every code path that reads or writes a rack's product stock goes through this
module. Matching walks ``MATCH_STRATEGIES`` in order; writes are
compare-and-set on ``Rack.version`` so a concurrent writer turns our update
into a miss instead of a lost update.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.errors import (
    EntryNotFound,
    InsufficientStock,
    NotFound,
    PersistenceConflict,
    ValidationError,
)
from stockledger.models.project import Rack
from stockledger.models.transaction import MovementDirection
from stockledger.services.refs import decode_entries, encode_entries, parse_id

logger = logging.getLogger(__name__)


def _match_native(ref: Any, product_id: uuid.UUID) -> bool:
    return isinstance(ref, uuid.UUID) and ref == product_id


def _match_string(ref: Any, product_id: uuid.UUID) -> bool:
    return isinstance(ref, str) and ref.strip().lower() == str(product_id)


def _match_embedded(ref: Any, product_id: uuid.UUID) -> bool:
    if not isinstance(ref, dict):
        return False
    inner = ref.get("_id", ref.get("id"))
    return _match_native(inner, product_id) or _match_string(inner, product_id)


MATCH_STRATEGIES: tuple[tuple[str, Callable[[Any, uuid.UUID], bool]], ...] = (
    ("native", _match_native),
    ("string", _match_string),
    ("embedded", _match_embedded),
)


@dataclass
class StockChange:
    previous: int
    new: int
    strategy: str  # matching strategy that hit, or "inserted"

    @property
    def created(self) -> bool:
        return self.strategy == "inserted"


@dataclass
class _RackSnapshot:
    id: str
    version: int
    entries: list[dict]


def stock_of(entry: dict) -> int:
    try:
        return int(entry.get("stock") or 0)
    except (TypeError, ValueError):
        return 0


def _index_with(entries: list[dict], product_id: uuid.UUID, matches) -> int | None:
    for idx, entry in enumerate(entries):
        if matches(entry.get("product"), product_id):
            return idx
    return None


def find_entry(entries: list[dict], product_id) -> tuple[int, dict] | None:
    """Locate the entry for ``product_id`` trying each strategy in order."""
    pid = parse_id(product_id, "productId")
    for _name, matches in MATCH_STRATEGIES:
        idx = _index_with(entries, pid, matches)
        if idx is not None:
            return idx, entries[idx]
    return None


def current_stock(rack: Rack, product_id) -> int:
    found = find_entry(decode_entries(rack.products), product_id)
    return stock_of(found[1]) if found else 0


def has_entry(rack: Rack, product_id) -> bool:
    return find_entry(decode_entries(rack.products), product_id) is not None


def _read(db: Session, rack_id: str) -> _RackSnapshot:
    row = db.execute(
        select(Rack.id, Rack.version, Rack.products).where(Rack.id == str(rack_id))
    ).one_or_none()
    if row is None:
        raise NotFound(f"Rack with ID {rack_id} not found")
    return _RackSnapshot(id=row.id, version=row.version, entries=decode_entries(row.products))


def _compare_and_set(db: Session, snapshot: _RackSnapshot, entries: list[dict]) -> bool:
    result = db.execute(
        update(Rack)
        .where(Rack.id == snapshot.id, Rack.version == snapshot.version)
        .values(
            products=encode_entries(entries),
            version=snapshot.version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    cached = db.identity_map.get(Session.identity_key(Rack, snapshot.id))
    if cached is not None:
        db.expire(cached)
    return True


def _write(db: Session, rack_id: str, product_id, compute: Callable[[int, bool], int]) -> StockChange:
    """Run ``compute(current, found) -> new`` against fresh rack state and store it.

    ``compute`` raises to refuse the write; nothing is written in that case.
    """
    pid = parse_id(product_id, "productId")
    passes = 1 + max(settings.RACK_WRITE_RETRIES, 0)

    for attempt in range(1, passes + 1):
        matched = False
        for name, matches in MATCH_STRATEGIES:
            snapshot = _read(db, rack_id)
            idx = _index_with(snapshot.entries, pid, matches)
            if idx is None:
                continue
            matched = True
            previous = stock_of(snapshot.entries[idx])
            new = compute(previous, True)
            entries = list(snapshot.entries)
            entries[idx] = {**entries[idx], "stock": new}
            if _compare_and_set(db, snapshot, entries):
                return StockChange(previous=previous, new=new, strategy=name)

        if not matched:
            snapshot = _read(db, rack_id)
            if find_entry(snapshot.entries, pid) is None:
                new = compute(0, False)
                entries = snapshot.entries + [{"product": pid, "stock": new}]
                if _compare_and_set(db, snapshot, entries):
                    return StockChange(previous=0, new=new, strategy="inserted")

        logger.warning(
            "Rack %s write for product %s missed on every strategy (pass %d/%d)",
            rack_id, pid, attempt, passes,
        )

    raise PersistenceConflict(f"Rack {rack_id} changed concurrently while updating product {pid}")


def apply_delta(db: Session, rack_id: str, product_id, direction: str, quantity: int) -> StockChange:
    """Add (``in``) or remove (``out``) ``quantity`` units; return the snapshot pair."""
    direction = MovementDirection(direction)
    if quantity <= 0:
        raise ValidationError(f"Quantity must be positive, got {quantity}")

    def compute(current: int, found: bool) -> int:
        if direction == MovementDirection.IN:
            return current + quantity
        if not found:
            raise EntryNotFound(f"Product {product_id} not found in rack {rack_id} for stock-out")
        if current < quantity:
            raise InsufficientStock(
                f"Insufficient stock for product {product_id} in rack {rack_id}. "
                f"Available: {current}, Requested: {quantity}",
                available=current,
                requested=quantity,
            )
        return current - quantity

    return _write(db, rack_id, product_id, compute)


def set_stock(db: Session, rack_id: str, product_id, value: int) -> StockChange:
    """Overwrite the on-hand value, inserting the entry when it does not exist."""
    if value < 0:
        raise ValidationError(f"Stock cannot be negative, got {value}")
    return _write(db, rack_id, product_id, lambda current, found: value)
