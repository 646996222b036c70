"""RedemptionOrder repository for data access."""

import logging
from collections.abc import Callable, Collection, Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from autopay.core import database
from autopay.core.locks import KeyedLock
from autopay.models.redemption_order import RedemptionOrder, RedemptionState
from autopay.schemas.redemption import (
    RedemptionOrderCreate,
    RedemptionOrderRead,
    RedemptionOrderUpdate,
)

logger = logging.getLogger(__name__)

_write_locks = KeyedLock()


class RedemptionOrderRepository:
    """Repository for RedemptionOrder model."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory or database.open_session

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    def get(self, merchant_order_id: str) -> RedemptionOrderRead | None:
        with self._session() as db:
            order = db.get(RedemptionOrder, merchant_order_id)
            return RedemptionOrderRead.model_validate(order) if order else None

    def get_by_subscription(self, merchant_subscription_id: str) -> list[RedemptionOrderRead]:
        with self._session() as db:
            orders = (
                db.query(RedemptionOrder)
                .filter(RedemptionOrder.merchant_subscription_id == merchant_subscription_id)
                .order_by(RedemptionOrder.created_at.desc())
                .all()
            )
            return [RedemptionOrderRead.model_validate(o) for o in orders]

    def create(self, data: RedemptionOrderCreate) -> RedemptionOrderRead:
        with self._session() as db:
            order = RedemptionOrder(
                merchant_order_id=data.merchant_order_id,
                merchant_subscription_id=data.merchant_subscription_id,
                amount=data.amount,
                state=data.state.value,
                gateway_order_id=data.gateway_order_id,
                expire_at=data.expire_at,
                retry_strategy=data.retry_strategy.value,
                auto_debit=data.auto_debit,
                meta_info=data.meta_info,
                error_code=data.error_code,
            )
            db.add(order)
            db.commit()
            db.refresh(order)
            logger.info(
                "Recorded redemption order %s for subscription %s",
                data.merchant_order_id,
                data.merchant_subscription_id,
            )
            return RedemptionOrderRead.model_validate(order)

    def update(
        self, merchant_order_id: str, data: RedemptionOrderUpdate
    ) -> RedemptionOrderRead | None:
        with _write_locks.hold(merchant_order_id), self._session() as db:
            order = db.get(RedemptionOrder, merchant_order_id)
            if not order:
                return None
            update_data = data.model_dump(exclude_unset=True)
            for key, value in update_data.items():
                if key == "state" and value is not None:
                    value = value.value
                setattr(order, key, value)
            db.commit()
            db.refresh(order)
            return RedemptionOrderRead.model_validate(order)

    def transition_state(
        self,
        merchant_order_id: str,
        expected: Collection[RedemptionState],
        new_state: RedemptionState,
    ) -> RedemptionOrderRead | None:
        """Move the order to ``new_state`` only if it is currently in ``expected``.

        Returns the updated order, or None when the order is missing or was
        in another state. The check and the write happen under the order's lock.
        """
        allowed = {state.value for state in expected}
        with _write_locks.hold(merchant_order_id), self._session() as db:
            order = db.get(RedemptionOrder, merchant_order_id)
            if not order or order.state not in allowed:
                return None
            previous = order.state
            order.state = new_state.value  # type: ignore[assignment]
            db.commit()
            db.refresh(order)
            logger.info(
                "Redemption order %s state %s -> %s", merchant_order_id, previous, new_state.value
            )
            return RedemptionOrderRead.model_validate(order)
