"""Local subscription store.

A durable cache of gateway subscriptions keyed by merchant subscription id.
It is the source of truth when the gateway cannot be reached, but it is not
authoritative: writes are last-write-wins and carry no concurrency token.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from autopay.core import database
from autopay.core.locks import KeyedLock
from autopay.models.subscription import (
    TERMINAL_STATUSES,
    ParsedStatus,
    Subscription,
    SubscriptionStatus,
    is_terminal,
    parse_status,
)
from autopay.schemas.subscription import SubscriptionRead, SubscriptionUpsert

logger = logging.getLogger(__name__)

_write_locks = KeyedLock()


class SubscriptionRepository:
    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory or database.open_session

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    def get_all(self) -> list[SubscriptionRead]:
        with self._session() as db:
            rows = (
                db.query(Subscription)
                .order_by(Subscription.created_at, Subscription.merchant_subscription_id)
                .all()
            )
            return [SubscriptionRead.model_validate(row) for row in rows]

    def get_active_only(self) -> list[SubscriptionRead]:
        with self._session() as db:
            rows = (
                db.query(Subscription)
                .filter(Subscription.status == SubscriptionStatus.ACTIVE.value)
                .order_by(Subscription.created_at, Subscription.merchant_subscription_id)
                .all()
            )
            return [SubscriptionRead.model_validate(row) for row in rows]

    def get_non_terminal(self) -> list[SubscriptionRead]:
        terminal = [status.value for status in TERMINAL_STATUSES]
        with self._session() as db:
            rows = (
                db.query(Subscription)
                .filter(Subscription.status.notin_(terminal))
                .order_by(Subscription.created_at, Subscription.merchant_subscription_id)
                .all()
            )
            return [SubscriptionRead.model_validate(row) for row in rows]

    def get(self, merchant_subscription_id: str) -> SubscriptionRead | None:
        with self._session() as db:
            row = db.get(Subscription, merchant_subscription_id)
            return SubscriptionRead.model_validate(row) if row else None

    def exists(self, merchant_subscription_id: str) -> bool:
        return self.get(merchant_subscription_id) is not None

    def upsert(self, data: SubscriptionUpsert) -> SubscriptionRead:
        """Insert the subscription if absent, otherwise replace the provided fields."""
        key = data.merchant_subscription_id
        fields = data.model_dump(exclude_unset=True)
        with _write_locks.hold(key), self._session() as db:
            row = db.get(Subscription, key)
            if row is None:
                fields.setdefault("status", SubscriptionStatus.PENDING.value)
                row = Subscription(**fields)
                db.add(row)
                logger.info("Added subscription %s", key)
            else:
                if "status" in fields and not _status_write_allowed(
                    parse_status(str(row.status)), parse_status(fields["status"])
                ):
                    logger.warning(
                        "Ignoring status %s for terminal subscription %s (%s)",
                        fields["status"],
                        key,
                        row.status,
                    )
                    del fields["status"]
                for name, value in fields.items():
                    setattr(row, name, value)
                logger.info("Updated subscription %s", key)
            db.commit()
            db.refresh(row)
            return SubscriptionRead.model_validate(row)

    def update_status(
        self, merchant_subscription_id: str, status: ParsedStatus | str
    ) -> SubscriptionRead | None:
        """Set the cached status. Returns None when the id is not stored.

        A terminal status is never replaced by a non-terminal one; such writes
        are dropped with a warning and the unchanged record is returned.
        """
        new_status = parse_status(status)
        with _write_locks.hold(merchant_subscription_id), self._session() as db:
            row = db.get(Subscription, merchant_subscription_id)
            if row is None:
                logger.warning("No stored subscription %s to update", merchant_subscription_id)
                return None

            current = parse_status(str(row.status))
            if not _status_write_allowed(current, new_status):
                logger.warning(
                    "Refusing to move terminal subscription %s from %s to %s",
                    merchant_subscription_id,
                    current.value,
                    new_status.value,
                )
                return SubscriptionRead.model_validate(row)

            if current != new_status:
                row.status = new_status.value  # type: ignore[assignment]
                db.commit()
                db.refresh(row)
                logger.info(
                    "Subscription %s status %s -> %s",
                    merchant_subscription_id,
                    current.value,
                    new_status.value,
                )
            return SubscriptionRead.model_validate(row)


def _status_write_allowed(current: ParsedStatus, new: ParsedStatus) -> bool:
    return not is_terminal(current) or is_terminal(new)
