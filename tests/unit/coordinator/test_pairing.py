"""Unit tests for the pairing queue and active pair table."""

import pytest

from paircall.coordinator.pairing import (
    ROLE_INITIATOR,
    ROLE_RECEIVER,
    ActivePairTable,
    PairingQueue,
    WaitingEntry,
)


class TestPairingQueue:
    """Test FIFO waiting list behavior."""

    def test_fifo_order(self) -> None:
        """Test entries come out in arrival order."""
        queue = PairingQueue()
        queue.enqueue("a", 1.0)
        queue.enqueue("b", 2.0)
        queue.enqueue("c", 3.0)

        assert [queue.pop_oldest().participant_id for _ in range(3)] == ["a", "b", "c"]  # type: ignore[union-attr]
        assert queue.pop_oldest() is None

    def test_reenqueue_moves_to_tail(self) -> None:
        """Test a repeated enqueue moves the participant instead of duplicating."""
        queue = PairingQueue()
        queue.enqueue("a", 1.0)
        queue.enqueue("b", 2.0)
        queue.enqueue("a", 3.0)

        assert len(queue) == 2
        assert [e.participant_id for e in queue] == ["b", "a"]
        assert next(e for e in queue if e.participant_id == "a").enqueued_at == 3.0

    def test_remove_from_middle(self) -> None:
        """Test removal from anywhere keeps the rest ordered."""
        queue = PairingQueue()
        for i, pid in enumerate(["a", "b", "c"]):
            queue.enqueue(pid, float(i))

        removed = queue.remove("b")

        assert removed is not None and removed.participant_id == "b"
        assert "b" not in queue
        assert [e.participant_id for e in queue] == ["a", "c"]
        assert queue.remove("missing") is None

    def test_push_front_keeps_timestamp(self) -> None:
        """Test an entry returned to the head keeps its original enqueue time."""
        queue = PairingQueue()
        queue.enqueue("b", 5.0)
        queue.push_front(WaitingEntry("a", 1.0))

        head = queue.pop_oldest()
        assert head == WaitingEntry("a", 1.0)

    def test_push_front_rejects_duplicate(self) -> None:
        """Test push_front refuses an already-queued participant."""
        queue = PairingQueue()
        queue.enqueue("a", 1.0)

        with pytest.raises(ValueError, match="already queued"):
            queue.push_front(WaitingEntry("a", 0.5))

    def test_oldest_wait_and_expired(self) -> None:
        """Test age reporting and expiry selection."""
        queue = PairingQueue()
        assert queue.oldest_wait(10.0) is None

        queue.enqueue("a", 0.0)
        queue.enqueue("b", 8.0)

        assert queue.oldest_wait(10.0) == 10.0
        assert [e.participant_id for e in queue.expired(10.0, 5.0)] == ["a"]
        # Exactly at the limit is not expired
        assert queue.expired(10.0, 10.0) == []


class TestActivePairTable:
    """Test symmetric pair bookkeeping."""

    def test_pair_is_symmetric(self) -> None:
        """Test both members resolve to each other."""
        table = ActivePairTable()
        active = table.pair("a", "b", 1.0)

        assert table.lookup_partner("a") == "b"
        assert table.lookup_partner("b") == "a"
        assert table.get("a") is table.get("b") is active
        assert active.pair_id.startswith("pair-")
        assert len(table) == 1

    def test_roles(self) -> None:
        """Test role lookup for both members and strangers."""
        table = ActivePairTable()
        active = table.pair("a", "b", 1.0)

        assert active.role_of("a") == ROLE_INITIATOR
        assert active.role_of("b") == ROLE_RECEIVER
        with pytest.raises(KeyError):
            active.role_of("c")
        with pytest.raises(KeyError):
            active.partner_of("c")

    def test_unpair_removes_both_directions(self) -> None:
        """Test unpairing from either side removes the whole pair."""
        table = ActivePairTable()
        table.pair("a", "b", 1.0)

        assert table.unpair("b") == "a"
        assert "a" not in table
        assert "b" not in table
        assert len(table) == 0
        assert table.unpair("a") is None

    def test_self_pairing_rejected(self) -> None:
        """Test a participant cannot be paired with itself."""
        table = ActivePairTable()
        with pytest.raises(ValueError, match="itself"):
            table.pair("a", "a", 1.0)

    def test_double_pairing_rejected(self) -> None:
        """Test a participant cannot be in two pairs."""
        table = ActivePairTable()
        table.pair("a", "b", 1.0)

        with pytest.raises(ValueError, match="already paired"):
            table.pair("c", "a", 2.0)
        assert table.lookup_partner("c") is None

    def test_touch_updates_activity(self) -> None:
        """Test relay activity resets the idle clock."""
        table = ActivePairTable()
        active = table.pair("a", "b", 0.0)

        assert active.idle_for(100.0) == 100.0
        table.touch("b", 90.0)
        assert active.idle_for(100.0) == 10.0

    def test_pairs_snapshot_is_unique(self) -> None:
        """Test each pair is listed once even though stored twice."""
        table = ActivePairTable()
        table.pair("a", "b", 0.0)
        table.pair("c", "d", 0.0)

        pairs = table.pairs()
        assert len(pairs) == 2
        assert {p.members for p in pairs} == {("a", "b"), ("c", "d")}
