"""Unit tests for the snapshot manager.

Covers per-entrant failure isolation, idempotent capture, the ranking
order and the end-of-tournament report.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from tests.fakes import (
    T0,
    FakeRecordStore,
    ScriptedProvider,
    UnlimitedRateLimiter,
    seed_tournament,
)
from walletwars.services.snapshots import SnapshotBudget, SnapshotManager
from walletwars.services.snapshots.manager import calculate_performance, rank_entrants


class TestCalculatePerformance:
    """Test the performance formula."""

    def test_gain(self):
        assert calculate_performance(Decimal("1.0"), Decimal("1.5")) == Decimal("50")

    def test_loss(self):
        assert calculate_performance(Decimal("2"), Decimal("1")) == Decimal("-50")

    def test_unchanged(self):
        assert calculate_performance(Decimal("3"), Decimal("3")) == 0

    def test_zero_start_rejected(self):
        with pytest.raises(ValueError):
            calculate_performance(Decimal("0"), Decimal("1"))


class TestStartSnapshots:
    """Test start-of-tournament capture."""

    def setup_method(self):
        self.store = FakeRecordStore()
        self.instance, self.entries = seed_tournament(self.store, 25)

    def _manager(self, provider, **kwargs):
        self.rate_limiter = UnlimitedRateLimiter()
        return SnapshotManager(self.store, provider, self.rate_limiter, **kwargs)

    @pytest.mark.asyncio
    async def test_failures_are_isolated_per_entrant(self):
        """
        25 entrants with 2 unreachable wallets.

        23 snapshots are stored, 2 failures reported, and the batch
        itself does not raise.
        """
        failing = {self.entries[4].wallet_address, self.entries[17].wallet_address}
        manager = self._manager(ScriptedProvider(failing=failing))

        result = await manager.process_tournament_start(self.instance.id)

        assert result.total == 25
        assert result.successful == 23
        assert result.failed == 2
        assert {f.entry_id for f in result.failures} == {
            self.entries[4].id,
            self.entries[17].id,
        }
        assert len(self.store.snapshots_of(self.instance.id, "start")) == 23
        assert self.entries[4].start_snapshot_id is None
        assert self.entries[0].start_snapshot_id is not None

    @pytest.mark.asyncio
    async def test_every_provider_call_goes_through_rate_limiter(self):
        provider = ScriptedProvider()
        manager = self._manager(provider)

        await manager.process_tournament_start(self.instance.id)

        assert self.rate_limiter.acquired == 25
        assert len(provider.calls) == 25

    @pytest.mark.asyncio
    async def test_rerun_does_not_capture_again(self):
        """A second start batch skips entries that are already linked."""
        provider = ScriptedProvider()
        manager = self._manager(provider)

        await manager.process_tournament_start(self.instance.id)
        second = await manager.process_tournament_start(self.instance.id)

        assert second.skipped == 25
        assert second.successful == 0
        assert len(provider.calls) == 25
        assert len(self.store.snapshots_of(self.instance.id, "start")) == 25

    @pytest.mark.asyncio
    async def test_stored_unlinked_snapshot_is_reused(self):
        """A snapshot stored before a crash is linked instead of captured again."""
        entry = self.entries[0]
        existing = self.store.add_snapshot(entry, "start", Decimal("4"))
        provider = ScriptedProvider()
        manager = self._manager(provider)

        await manager.process_tournament_start(self.instance.id)

        assert entry.start_snapshot_id == existing.id
        assert entry.wallet_address not in provider.calls
        assert len(self.store.snapshots_of(self.instance.id, "start")) == 25

    @pytest.mark.asyncio
    async def test_link_failure_is_recorded(self):
        """A storage failure on one entry is reported like a provider failure."""
        self.store.fail("update_entry")
        manager = self._manager(ScriptedProvider())

        result = await manager.process_tournament_start(self.instance.id)

        assert result.failed == 1
        assert result.successful == 24

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        provider = ScriptedProvider(delay=0.01)
        manager = self._manager(provider, max_concurrency=3)

        await manager.process_tournament_start(self.instance.id)

        assert provider.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_provider_calls_recorded_in_budget(self):
        budget = SnapshotBudget(hourly_limit=100, clock=lambda: T0)
        manager = self._manager(ScriptedProvider(), budget=budget)

        await manager.process_tournament_start(self.instance.id)

        assert await budget.usage() == (25, 25)


class TestEndSnapshotsAndRanking:
    """Test end-of-tournament capture and ranking."""

    def setup_method(self):
        self.store = FakeRecordStore()
        self.instance, self.entries = seed_tournament(self.store, 4, status="active")
        self.values = {
            self.entries[0].wallet_address: [Decimal("1"), Decimal("1.1")],  # +10%
            self.entries[1].wallet_address: [Decimal("2"), Decimal("3")],  # +50%
            self.entries[2].wallet_address: [Decimal("1"), Decimal("0.8")],  # -20%
            self.entries[3].wallet_address: [Decimal("5"), Decimal("5.5")],  # +10%
        }

    async def _run(self, failing=()):
        provider = ScriptedProvider(values=self.values, failing=())
        manager = SnapshotManager(self.store, provider, UnlimitedRateLimiter())
        await manager.process_tournament_start(self.instance.id)
        provider.failing = set(failing)
        return manager, await manager.process_tournament_end(self.instance.id)

    @pytest.mark.asyncio
    async def test_ranked_by_performance_descending(self):
        _, results = await self._run()

        assert results.success is True
        assert [r.entry_id for r in results.rankings] == [
            self.entries[1].id,
            self.entries[0].id,
            self.entries[3].id,
            self.entries[2].id,
        ]
        assert [r.rank for r in results.rankings] == [1, 2, 3, 4]
        assert results.rankings[0].performance == Decimal("50")

    @pytest.mark.asyncio
    async def test_tie_goes_to_earlier_registration(self):
        """Entries 0 and 3 both gained 10%; entry 0 registered first."""
        _, results = await self._run()

        tied = [r for r in results.rankings if r.performance == Decimal("10")]
        assert [r.entry_id for r in tied] == [self.entries[0].id, self.entries[3].id]

    @pytest.mark.asyncio
    async def test_end_failure_excludes_entrant(self):
        _, results = await self._run(failing={self.entries[1].wallet_address})

        assert len(results.rankings) == 3
        assert results.success is True
        excluded = {e.entry_id: e.reason for e in results.excluded}
        assert excluded[self.entries[1].id].startswith("end_snapshot_failed")

    @pytest.mark.asyncio
    async def test_fewer_than_two_ranked_is_unsuccessful(self):
        failing = {e.wallet_address for e in self.entries[1:]}

        _, results = await self._run(failing=failing)

        assert len(results.rankings) == 1
        assert results.success is False

    @pytest.mark.asyncio
    async def test_entrant_without_start_snapshot_is_not_captured_at_end(self):
        provider = ScriptedProvider(values=self.values, failing={self.entries[2].wallet_address})
        manager = SnapshotManager(self.store, provider, UnlimitedRateLimiter())
        await manager.process_tournament_start(self.instance.id)
        provider.failing = set()
        calls_before = len(provider.calls)

        results = await manager.process_tournament_end(self.instance.id)

        assert len(provider.calls) - calls_before == 3
        excluded = {e.entry_id: e.reason for e in results.excluded}
        assert excluded == {self.entries[2].id: "no_start_snapshot"}

    @pytest.mark.asyncio
    async def test_report_summarizes_distribution(self):
        manager, _ = await self._run()

        report = await manager.generate_tournament_report(self.instance.id)

        assert report["participant_count"] == 4
        assert report["start_snapshots"] == 4
        assert report["end_snapshots"] == 4
        assert report["snapshot_failures"] == 0
        assert report["ranked"] == 4
        assert report["performance"]["max"] == 50.0
        assert report["performance"]["min"] == -20.0
        assert report["performance"]["median"] == 10.0
        assert report["performance"]["gainers"] == 3
        assert report["performance"]["losers"] == 1
        assert report["top_performers"][0]["entry_id"] == self.entries[1].id


class TestRankEntrants:
    """Test ranking of stored snapshots."""

    def test_zero_start_value_is_excluded(self):
        store = FakeRecordStore()
        instance, entries = seed_tournament(store, 3, status="active")
        snapshots = {}
        for entry, start, end in zip(
            entries,
            (Decimal("0"), Decimal("1"), Decimal("1")),
            (Decimal("1"), Decimal("2"), Decimal("1")),
        ):
            s = store.add_snapshot(entry, "start", start)
            e = store.add_snapshot(entry, "end", end)
            entry.start_snapshot_id, entry.end_snapshot_id = s.id, e.id
            snapshots[s.id], snapshots[e.id] = s, e

        rankings, excluded = rank_entrants(entries, snapshots)

        assert [r.entry_id for r in rankings] == [entries[1].id, entries[2].id]
        assert excluded[0].reason == "zero_start_value"

    def test_same_registration_time_breaks_on_entry_id(self):
        store = FakeRecordStore()
        instance, entries = seed_tournament(store, 2, status="active")
        snapshots = {}
        for entry in entries:
            entry.registered_at = T0 - timedelta(days=1)
            s = store.add_snapshot(entry, "start", Decimal("1"))
            e = store.add_snapshot(entry, "end", Decimal("2"))
            entry.start_snapshot_id, entry.end_snapshot_id = s.id, e.id
            snapshots[s.id], snapshots[e.id] = s, e

        rankings, _ = rank_entrants(list(reversed(entries)), snapshots)

        assert [r.entry_id for r in rankings] == [entries[0].id, entries[1].id]
