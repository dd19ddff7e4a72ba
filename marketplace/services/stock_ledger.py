# marketplace/services/stock_ledger.py
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from marketplace.data.models.stock import StockReservationModel
from marketplace.repos.stock_repo import StockRepo
from marketplace.utils.clock import utcnow
from marketplace.utils.errors import InsufficientStockError, ConcurrencyConflictError
from marketplace.utils.logging import get_logger
from marketplace.utils.retry import conflict_retry
from marketplace.utils.settings import RESERVATION_TTL_SECONDS

logger = get_logger(__name__)


def aggregate_lines(lines: Iterable[dict]) -> list[tuple[tuple[int, int | None], int]]:
    """
    Sums quantities per (item, variant) and sorts the keys, so every writer
    claims stock rows in the same order.
    """
    totals: dict[tuple[int, int | None], int] = defaultdict(int)
    for line in lines:
        totals[(line["item_id"], line.get("variant_id"))] += int(line["quantity"])
    return sorted(totals.items(), key=lambda kv: (kv[0][0], kv[0][1] if kv[0][1] is not None else -1))


class StockLedger:
    """
    Committed stock plus time-boxed reservations.

    Available = committed - live reservations of other buyers. A buyer's own
    earlier reservations never count against them, so an abandoned checkout
    attempt cannot lock its owner out.

    Every write claims the stock row with a version check (optimistic
    locking), so check-and-insert is atomic at the storage layer.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = StockRepo(db)

    #query
    def available(self, item_id: int, variant_id: int | None, excluding_buyer: int | None = None, now: datetime | None = None) -> int:
        now = now or utcnow()
        level = self.repo.read_level(item_id, variant_id)
        if level is None:
            return 0
        _, quantity, _ = level
        return quantity - self.repo.live_reserved(item_id, variant_id, now, excluding_buyer=excluding_buyer)

    #commands
    def reserve(
        self,
        buyer_id: int,
        lines: Iterable[dict],
        draft_id: int | None = None,
        gateway_order_id: str | None = None,
        ttl: int = RESERVATION_TTL_SECONDS,
        now: datetime | None = None,
    ) -> list[int]:
        """
        All-or-nothing reservation of every line. Commits on success; on
        failure nothing is reserved.
        """
        wanted = aggregate_lines(lines)
        return self._reserve(buyer_id, wanted, draft_id, gateway_order_id, ttl, now)

    @conflict_retry()
    def _reserve(self, buyer_id, wanted, draft_id, gateway_order_id, ttl, now) -> list[int]:
        now = now or utcnow()
        expires_at = now + timedelta(seconds=ttl)

        try:
            for (item_id, variant_id), requested in wanted:
                self._claim(buyer_id, item_id, variant_id, requested, now)

            # supersede the buyer's own earlier attempt for the same stock
            reservations = []
            for (item_id, variant_id), requested in wanted:
                self.repo.delete_buyer_reservations(buyer_id, item_id, variant_id)
                reservation = StockReservationModel(
                    buyer_id=buyer_id,
                    draft_id=draft_id,
                    gateway_order_id=gateway_order_id,
                    item_id=item_id,
                    variant_id=variant_id,
                    quantity=requested,
                    expires_at=expires_at,
                )
                self.repo.add_reservation(reservation)
                reservations.append(reservation)

            self.db.flush()
            ids = [r.id for r in reservations]
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Reserved {wanted} for buyer {buyer_id} draft {draft_id} until {expires_at.isoformat()}")
        return ids

    def _claim(self, buyer_id: int, item_id: int, variant_id: int | None, requested: int, now: datetime) -> None:
        level = self.repo.read_level(item_id, variant_id)
        if level is None:
            raise InsufficientStockError(item_id, variant_id, requested, 0)

        level_id, quantity, version = level
        available = quantity - self.repo.live_reserved(item_id, variant_id, now, excluding_buyer=buyer_id)
        if available < requested:
            raise InsufficientStockError(item_id, variant_id, requested, available)

        if self.repo.bump_version(level_id, version) == 0:
            logger.info(f"Stock row {level_id} changed under reservation, retrying")
            raise ConcurrencyConflictError(item_id=item_id, variant_id=variant_id)

    def bind_gateway_order(self, draft_id: int, gateway_order_id: str) -> int:
        count = self.repo.attach_gateway_order(draft_id, gateway_order_id)
        self.db.commit()
        return count

    def release(self, draft_id: int) -> int:
        count = self.repo.delete_for_draft(draft_id)
        self.db.commit()
        logger.info(f"Released {count} reservations for draft {draft_id}")
        return count

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        count = self.repo.delete_expired(now)
        self.db.commit()
        if count:
            logger.info(f"Purged {count} expired reservations")
        return count

    def promote(self, buyer_id: int, gateway_order_id: str, lines: Iterable[dict], now: datetime | None = None) -> None:
        """
        Turns the reservation into a committed decrement. Runs inside the
        caller's transaction (order creation) and does not commit.

        Stock is re-checked here: reservations are advisory, and this one
        may have expired or been purged.
        """
        now = now or utcnow()
        for (item_id, variant_id), requested in aggregate_lines(lines):
            self._decrement(buyer_id, item_id, variant_id, requested, now)

        self.repo.delete_for_gateway_order(gateway_order_id)
        logger.info(f"Promoted reservations of gateway order {gateway_order_id} for buyer {buyer_id}")

    @conflict_retry()
    def _decrement(self, buyer_id: int, item_id: int, variant_id: int | None, requested: int, now: datetime) -> None:
        # a failed conditional update changes nothing, so re-reading inside the transaction is safe
        level = self.repo.read_level(item_id, variant_id)
        if level is None:
            raise InsufficientStockError(item_id, variant_id, requested, 0)

        level_id, quantity, version = level
        available = quantity - self.repo.live_reserved(item_id, variant_id, now, excluding_buyer=buyer_id)
        if available < requested:
            raise InsufficientStockError(item_id, variant_id, requested, available)

        if self.repo.decrement(level_id, version, requested) == 0:
            raise ConcurrencyConflictError(item_id=item_id, variant_id=variant_id)
