"""Snapshot manager.

Captures wallet state for every entrant at tournament start and end and
ranks entrants by performance:

    performance = (end_value - start_value) / start_value * 100

Each entrant is captured independently; one failure never aborts the
batch. Capture is idempotent: an entry already linked to a snapshot of
the requested type is skipped, and a stored but unlinked snapshot is
reused instead of captured again.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from statistics import mean, median
from typing import Any

import structlog

from walletwars.models.domain import (
    EntryStatus,
    SnapshotType,
    TournamentEntry,
    WalletSnapshot,
)
from walletwars.services.snapshots.budget import SnapshotBudget
from walletwars.services.store.base import RecordStore
from walletwars.services.wallet_client.providers import SnapshotProvider
from walletwars.services.wallet_client.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)

MIN_RANKED_ENTRANTS = 2


def calculate_performance(start_value: Decimal, end_value: Decimal) -> Decimal:
    """
    Percentage change between two wallet values.

    Raises:
        ValueError: If the start value is not positive
    """
    if start_value <= 0:
        raise ValueError("start value must be positive")
    return (end_value - start_value) / start_value * 100


@dataclass
class SnapshotFailure:
    entry_id: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SnapshotBatchResult:
    """Outcome of one start or end batch."""

    snapshot_type: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[SnapshotFailure] = field(default_factory=list)

    def add_failure(self, entry_id: int, reason: str) -> None:
        self.failed += 1
        self.failures.append(SnapshotFailure(entry_id=entry_id, reason=reason))

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot_type": self.snapshot_type,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class Ranking:
    """Final standing of one entrant."""

    entry_id: int
    champion_id: int
    wallet_address: str
    rank: int
    performance: Decimal
    start_value: Decimal
    end_value: Decimal
    registered_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "champion_id": self.champion_id,
            "wallet_address": self.wallet_address,
            "rank": self.rank,
            "performance": str(self.performance),
            "start_value": str(self.start_value),
            "end_value": str(self.end_value),
        }


@dataclass
class ExcludedEntrant:
    """Entrant left out of the ranking, and why."""

    entry_id: int
    champion_id: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TournamentResults:
    """Result of the end-of-tournament batch."""

    tournament_id: int
    success: bool
    rankings: list[Ranking] = field(default_factory=list)
    excluded: list[ExcludedEntrant] = field(default_factory=list)
    batch: SnapshotBatchResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "success": self.success,
            "rankings": [r.to_dict() for r in self.rankings],
            "excluded": [e.to_dict() for e in self.excluded],
            "batch": self.batch.to_dict() if self.batch else None,
        }


def rank_entrants(
    entries: list[TournamentEntry],
    snapshots: dict[int, WalletSnapshot],
) -> tuple[list[Ranking], list[ExcludedEntrant]]:
    """
    Rank entries by descending performance.

    Ties go to the earlier registration, then the lower entry id, so the
    same inputs always give the same order.
    """
    scored = []
    excluded = []

    for entry in entries:
        start = snapshots.get(entry.start_snapshot_id) if entry.start_snapshot_id else None
        end = snapshots.get(entry.end_snapshot_id) if entry.end_snapshot_id else None

        if start is None:
            excluded.append(ExcludedEntrant(entry.id, entry.champion_id, "no_start_snapshot"))
            continue
        if end is None:
            excluded.append(ExcludedEntrant(entry.id, entry.champion_id, "no_end_snapshot"))
            continue
        try:
            performance = calculate_performance(start.total_value, end.total_value)
        except ValueError:
            excluded.append(ExcludedEntrant(entry.id, entry.champion_id, "zero_start_value"))
            continue

        scored.append((entry, performance, start.total_value, end.total_value))

    scored.sort(key=lambda item: (-item[1], item[0].registered_at, item[0].id))

    rankings = [
        Ranking(
            entry_id=entry.id,
            champion_id=entry.champion_id,
            wallet_address=entry.wallet_address,
            rank=position,
            performance=performance,
            start_value=start_value,
            end_value=end_value,
            registered_at=entry.registered_at,
        )
        for position, (entry, performance, start_value, end_value) in enumerate(scored, start=1)
    ]
    return rankings, excluded


class SnapshotManager:
    """
    Captures start/end wallet snapshots and computes rankings.

    Provider calls within one batch run concurrently up to
    ``max_concurrency`` and are all paced by the shared rate limiter.
    """

    def __init__(
        self,
        store: RecordStore,
        provider: SnapshotProvider,
        rate_limiter: RateLimiter,
        budget: SnapshotBudget | None = None,
        max_concurrency: int = 5,
    ):
        """
        Initialize snapshot manager.

        Args:
            store: Record store
            provider: Wallet snapshot provider (usually a fallback chain)
            rate_limiter: Shared limiter for every provider call
            budget: Optional call budget; each provider call is recorded
            max_concurrency: Concurrent provider calls per batch
        """
        self.store = store
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.budget = budget
        self.max_concurrency = max_concurrency

    async def _fetch(self, address: str):
        await self.rate_limiter.acquire()
        if self.budget is not None:
            await self.budget.record(1)
        return await self.provider.get_full_snapshot(address)

    async def _capture_entry(
        self,
        entry: TournamentEntry,
        snapshot_type: SnapshotType,
        result: SnapshotBatchResult,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Capture and link one snapshot. Failures are recorded, never raised."""
        link_field = f"{snapshot_type.value}_snapshot_id"
        if getattr(entry, link_field):
            result.skipped += 1
            return

        async with semaphore:
            try:
                snapshot = await self.store.find_snapshot(entry.id, snapshot_type.value)
                if snapshot is None:
                    data = await self._fetch(entry.wallet_address)
                    snapshot = await self.store.insert_snapshot(
                        entry_id=entry.id,
                        wallet_address=data.address,
                        snapshot_type=snapshot_type.value,
                        balance=data.balance,
                        holdings=data.holdings_as_dicts(),
                        total_value=data.total_value,
                        provider=data.provider,
                        captured_at=data.timestamp,
                        raw_response=data.raw,
                    )
                else:
                    logger.info(
                        "snapshot_reused",
                        entry_id=entry.id,
                        snapshot_type=snapshot_type.value,
                        snapshot_id=snapshot.id,
                    )

                await self.store.update_entry(entry.id, **{link_field: snapshot.id})
                setattr(entry, link_field, snapshot.id)
                result.successful += 1

            except Exception as e:
                result.add_failure(entry.id, str(e) or type(e).__name__)
                logger.warning(
                    "snapshot_capture_failed",
                    entry_id=entry.id,
                    snapshot_type=snapshot_type.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def _capture_batch(
        self,
        entries: list[TournamentEntry],
        snapshot_type: SnapshotType,
    ) -> SnapshotBatchResult:
        result = SnapshotBatchResult(snapshot_type=snapshot_type.value, total=len(entries))
        semaphore = asyncio.Semaphore(self.max_concurrency)
        await asyncio.gather(
            *(self._capture_entry(e, snapshot_type, result, semaphore) for e in entries)
        )
        return result

    async def process_tournament_start(self, tournament_id: int) -> SnapshotBatchResult:
        """
        Capture start snapshots for all registered entrants.

        Raises:
            StorageError: If entries cannot be listed at all
        """
        entries = await self.store.list_entries(
            tournament_id, statuses=[EntryStatus.REGISTERED.value]
        )
        logger.info(
            "start_snapshots_starting",
            tournament_id=tournament_id,
            entrants=len(entries),
        )

        result = await self._capture_batch(entries, SnapshotType.START)

        logger.info(
            "start_snapshots_complete",
            tournament_id=tournament_id,
            successful=result.successful,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result

    async def process_tournament_end(self, tournament_id: int) -> TournamentResults:
        """
        Capture end snapshots and rank entrants.

        Only entrants with a start snapshot are captured. The result is
        unsuccessful when fewer than two entrants have both snapshots.

        Raises:
            StorageError: If entries or snapshots cannot be read
        """
        entries = await self.store.list_entries(
            tournament_id, statuses=[EntryStatus.REGISTERED.value]
        )
        started = [e for e in entries if e.start_snapshot_id]
        logger.info(
            "end_snapshots_starting",
            tournament_id=tournament_id,
            entrants=len(entries),
            started=len(started),
        )

        batch = await self._capture_batch(started, SnapshotType.END)

        snapshot_ids = [e.start_snapshot_id for e in started] + [
            e.end_snapshot_id for e in started if e.end_snapshot_id
        ]
        snapshots = await self.store.get_snapshots(snapshot_ids)
        rankings, excluded = rank_entrants(entries, snapshots)

        for failure in batch.failures:
            for item in excluded:
                if item.entry_id == failure.entry_id:
                    item.reason = f"end_snapshot_failed: {failure.reason}"

        results = TournamentResults(
            tournament_id=tournament_id,
            success=len(rankings) >= MIN_RANKED_ENTRANTS,
            rankings=rankings,
            excluded=excluded,
            batch=batch,
        )

        logger.info(
            "end_snapshots_complete",
            tournament_id=tournament_id,
            ranked=len(rankings),
            excluded=len(excluded),
            successful=batch.successful,
            failed=batch.failed,
            success=results.success,
        )
        return results

    async def generate_tournament_report(self, tournament_id: int) -> dict[str, Any]:
        """
        Summarize a tournament from stored entries and snapshots.

        Pure read; rankings are recomputed from what is stored.
        """
        entries = await self.store.list_entries(
            tournament_id, statuses=[EntryStatus.REGISTERED.value]
        )
        snapshot_ids = [
            sid
            for e in entries
            for sid in (e.start_snapshot_id, e.end_snapshot_id)
            if sid
        ]
        snapshots = await self.store.get_snapshots(snapshot_ids)
        rankings, excluded = rank_entrants(entries, snapshots)

        start_count = sum(1 for e in entries if e.start_snapshot_id)
        end_count = sum(1 for e in entries if e.start_snapshot_id and e.end_snapshot_id)
        performances = [float(r.performance) for r in rankings]

        distribution: dict[str, Any] = {
            "min": None,
            "max": None,
            "mean": None,
            "median": None,
            "gainers": sum(1 for p in performances if p > 0),
            "losers": sum(1 for p in performances if p < 0),
            "unchanged": sum(1 for p in performances if p == 0),
        }
        if performances:
            distribution.update(
                {
                    "min": round(min(performances), 4),
                    "max": round(max(performances), 4),
                    "mean": round(mean(performances), 4),
                    "median": round(median(performances), 4),
                }
            )

        return {
            "tournament_id": tournament_id,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "participant_count": len(entries),
            "start_snapshots": start_count,
            "end_snapshots": end_count,
            "snapshot_failures": (len(entries) - start_count) + (start_count - end_count),
            "ranked": len(rankings),
            "excluded": [e.to_dict() for e in excluded],
            "performance": distribution,
            "top_performers": [r.to_dict() for r in rankings[:10]],
        }
