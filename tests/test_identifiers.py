"""Tests for merchant id generation."""

import threading

from autopay.core.identifiers import (
    generate_id,
    new_redemption_order_id,
    new_setup_order_id,
    new_subscription_id,
)


class TestIdentifiers:
    def test_prefixes(self):
        assert new_setup_order_id().startswith("MO")
        assert new_subscription_id().startswith("MS")
        assert new_redemption_order_id().startswith("RO")

    def test_ids_increase_within_one_millisecond(self):
        first = int(generate_id("X")[1:])
        second = int(generate_id("X")[1:])
        assert second > first

    def test_no_duplicates_across_threads(self):
        ids: list[str] = []
        guard = threading.Lock()

        def mint() -> None:
            local = [new_redemption_order_id() for _ in range(200)]
            with guard:
                ids.extend(local)

        threads = [threading.Thread(target=mint) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ids) == 1600
        assert len(set(ids)) == 1600
