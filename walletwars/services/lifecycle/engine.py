"""Tournament lifecycle engine.

Drives tournament instances through the lifecycle:

1. scheduled -> registering when registration opens
2. registering -> registration_closed when registration closes
   (cancelled instead when fewer than the minimum have registered)
3. registration_closed -> active at start time, then start snapshots
4. active -> ended at end time, then end snapshots and rankings
5. ended -> complete once prizes are recorded, else needs_review

Each pass lists every non-terminal instance and fires at most one due
transition per instance. Transitions are never chained within a pass.
Status writes are compare-and-set, and every transition runs inside an
in-flight guard keyed on (tournament id, transition kind).
"""

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from walletwars.config.tournaments import TournamentConfig
from walletwars.models.domain import (
    EntryStatus,
    PayoutStatus,
    TournamentEntry,
    TournamentInstance,
    TournamentStatus,
    TournamentTemplate,
)
from walletwars.services.errors import (
    DuplicateTransitionError,
    InsufficientParticipantsError,
    InvalidTransitionError,
    RankingUnavailableError,
    StorageError,
)
from walletwars.services.lifecycle.escrow import PayoutInstruction, PrizeEscrow
from walletwars.services.lifecycle.guard import InMemoryTransitionGuard, TransitionGuard
from walletwars.services.lifecycle.states import (
    NON_TERMINAL_STATUSES,
    TransitionKind,
    cancel_guard_kind,
    evaluate_transition,
    validate_transition,
)
from walletwars.services.prizes import calculate_distribution, select_percentages
from walletwars.services.snapshots.budget import SnapshotBudget
from walletwars.services.snapshots.manager import Ranking, SnapshotManager
from walletwars.services.store.base import RecordStore

logger = structlog.get_logger(__name__)

NOT_ENOUGH_PARTICIPANTS = "Not enough participants"
DEFAULT_MIN_PARTICIPANTS = 2

S = TournamentStatus


class TransitionOutcome(str, Enum):
    """What happened to one instance in one pass."""

    NOT_DUE = "not_due"
    APPLIED = "applied"
    SKIPPED = "skipped"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"
    NEEDS_REVIEW = "needs_review"
    FAILED = "failed"


@dataclass
class TransitionResult:
    tournament_id: int
    transition: str | None
    outcome: TransitionOutcome
    status: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "transition": self.transition,
            "outcome": self.outcome.value,
            "status": self.status,
            "detail": self.detail,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def compute_prize_pool(
    entries: list[TournamentEntry],
    template: TournamentTemplate | None,
) -> Decimal:
    """Sum of entry fees paid times the template's prize pool percentage."""
    fees = sum((Decimal(str(e.entry_fee_paid or 0)) for e in entries), Decimal("0"))
    percentage = Decimal("100")
    if template is not None and template.prize_pool_percentage is not None:
        percentage = Decimal(str(template.prize_pool_percentage))
    return fees * percentage / Decimal("100")


class TournamentLifecycleEngine:
    """
    Polls tournament instances and fires due transitions.

    Collaborators are injected so the same engine runs inside a Celery
    task (Redis guard and budget), the API process, or tests (in-memory
    store and fake providers).
    """

    def __init__(
        self,
        store: RecordStore,
        snapshot_manager: SnapshotManager,
        tournament_config: TournamentConfig,
        guard: TransitionGuard | None = None,
        budget: SnapshotBudget | None = None,
        escrow: PrizeEscrow | None = None,
        clock: Callable[[], datetime] = _utc_now,
        poll_interval: float = 60.0,
        stats_include_all_participants: bool = False,
    ):
        """
        Initialize engine.

        Args:
            store: Record store
            snapshot_manager: Start/end snapshot batches and rankings
            tournament_config: Prize tables by tier
            guard: In-flight guard (in-memory if omitted)
            budget: Optional provider call budget
            escrow: Optional prize transfer executor
            clock: Current UTC time
            poll_interval: Seconds between passes in run_forever
            stats_include_all_participants: Count a played tournament for
                every ranked entrant, not only prize winners
        """
        self.store = store
        self.snapshots = snapshot_manager
        self.tournament_config = tournament_config
        self.guard = guard or InMemoryTransitionGuard()
        self.budget = budget
        self.escrow = escrow
        self.clock = clock
        self.poll_interval = poll_interval
        self.stats_include_all_participants = stats_include_all_participants

        self._stop_event = asyncio.Event()
        self._running = False
        self._last_pass_at: datetime | None = None
        self._last_pass_summary: dict[str, int] = {}

    # Driver

    async def run_pass(self, now: datetime | None = None) -> list[TransitionResult]:
        """
        Evaluate every non-terminal instance once.

        Never raises: a failure on one instance is logged and the pass
        moves on to the next.
        """
        now = now or self.clock()
        try:
            instances = await self.store.list_instances(sorted(NON_TERMINAL_STATUSES))
        except StorageError as e:
            logger.error("lifecycle_pass_list_failed", error=str(e))
            return []

        results = []
        for instance in instances:
            results.append(await self.process_instance(instance, now))

        summary = Counter(r.outcome.value for r in results)
        self._last_pass_at = now
        self._last_pass_summary = dict(summary)

        fired = len(results) - summary.get(TransitionOutcome.NOT_DUE.value, 0)
        if fired:
            logger.info("lifecycle_pass_complete", instances=len(instances), **summary)
        else:
            logger.debug("lifecycle_pass_idle", instances=len(instances))
        return results

    async def run_forever(self) -> None:
        """Run passes every ``poll_interval`` seconds until stop() is called."""
        self._running = True
        self._stop_event.clear()
        logger.info("lifecycle_engine_started", poll_interval=self.poll_interval)
        try:
            while not self._stop_event.is_set():
                await self.run_pass()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("lifecycle_engine_stopped")

    def stop(self) -> None:
        self._stop_event.set()

    async def process_instance(
        self, instance: TournamentInstance, now: datetime | None = None
    ) -> TransitionResult:
        """Fire the transition due for one instance, if any."""
        now = now or self.clock()
        kind = evaluate_transition(instance, now)
        if kind is None:
            return TransitionResult(
                instance.id, None, TransitionOutcome.NOT_DUE, status=instance.status
            )

        handlers = {
            TransitionKind.OPEN_REGISTRATION: self.open_registration,
            TransitionKind.CLOSE_REGISTRATION: self.close_registration,
            TransitionKind.START: self.start_tournament,
            TransitionKind.END: self.end_tournament,
            TransitionKind.RECOVER: self.recover_interrupted,
        }
        return await handlers[kind](instance.id)

    # Transitions

    async def open_registration(self, tournament_id: int) -> TransitionResult:
        return await self._execute(tournament_id, TransitionKind.OPEN_REGISTRATION, self._open)

    async def close_registration(self, tournament_id: int) -> TransitionResult:
        return await self._execute(tournament_id, TransitionKind.CLOSE_REGISTRATION, self._close)

    async def start_tournament(self, tournament_id: int) -> TransitionResult:
        return await self._execute(tournament_id, TransitionKind.START, self._start)

    async def end_tournament(self, tournament_id: int) -> TransitionResult:
        return await self._execute(tournament_id, TransitionKind.END, self._end)

    async def recover_interrupted(self, tournament_id: int) -> TransitionResult:
        return await self._execute(tournament_id, TransitionKind.RECOVER, self._recover)

    async def cancel_tournament(
        self, tournament_id: int, reason: str = "Cancelled by operator"
    ) -> TransitionResult:
        async def handler(instance: TournamentInstance) -> TransitionResult:
            return await self._cancel(instance, reason)

        return await self._execute(tournament_id, TransitionKind.CANCEL, handler)

    async def _execute(
        self,
        tournament_id: int,
        kind: TransitionKind,
        handler: Callable[[TournamentInstance], Awaitable[TransitionResult]],
    ) -> TransitionResult:
        """
        Run one transition under its in-flight guard.

        The instance is re-read after the guard is taken, so the handler
        always sees the persisted status.

        A cancel holds the guard of the transition that would leave the
        current status, and gives up if that status moved before the guard
        was taken.
        """
        try:
            guard_kind = await self._guard_kind_for(tournament_id, kind)
            async with self.guard.hold(tournament_id, guard_kind):
                instance = await self.store.get_instance(tournament_id)
                if instance is None:
                    return TransitionResult(
                        tournament_id,
                        kind.value,
                        TransitionOutcome.SKIPPED,
                        detail={"reason": "not_found"},
                    )
                if (
                    kind is TransitionKind.CANCEL
                    and cancel_guard_kind(instance.status) != guard_kind
                ):
                    return self._lost_race(instance, kind)
                return await handler(instance)

        except DuplicateTransitionError:
            logger.info(
                "transition_already_in_flight",
                tournament_id=tournament_id,
                transition=kind.value,
            )
            return TransitionResult(
                tournament_id,
                kind.value,
                TransitionOutcome.SKIPPED,
                detail={"reason": "in_flight"},
            )

        except InvalidTransitionError as e:
            logger.info(
                "transition_not_allowed",
                tournament_id=tournament_id,
                transition=kind.value,
                current=e.current,
                target=e.target,
            )
            return TransitionResult(
                tournament_id,
                kind.value,
                TransitionOutcome.SKIPPED,
                status=e.current,
                detail={"reason": str(e)},
            )

        except Exception as e:
            logger.error(
                "transition_failed",
                tournament_id=tournament_id,
                transition=kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return TransitionResult(
                tournament_id,
                kind.value,
                TransitionOutcome.FAILED,
                detail={"error": str(e)},
            )

    async def _guard_kind_for(self, tournament_id: int, kind: TransitionKind) -> str:
        if kind is not TransitionKind.CANCEL:
            return kind.guard_kind
        current = await self.store.get_instance(tournament_id)
        return cancel_guard_kind(current.status if current is not None else None)

    def _require_status(self, instance: TournamentInstance, expected: str, target: str) -> None:
        if instance.status != expected:
            raise InvalidTransitionError(instance.status, target)

    async def _set_status(self, instance: TournamentInstance, target: str, **fields: Any) -> bool:
        """
        Compare-and-set the instance status.

        Returns:
            False if the stored status changed since the instance was read
        """
        validate_transition(instance.status, target)
        applied = await self.store.update_instance(
            instance.id, expected_status=instance.status, status=target, **fields
        )
        if not applied:
            logger.warning(
                "status_update_lost_race",
                tournament_id=instance.id,
                expected=instance.status,
                target=target,
            )
            return False

        logger.info(
            "tournament_status_changed",
            tournament_id=instance.id,
            from_status=instance.status,
            to_status=target,
        )
        instance.status = target
        for name, value in fields.items():
            setattr(instance, name, value)
        return True

    def _lost_race(self, instance: TournamentInstance, kind: TransitionKind) -> TransitionResult:
        return TransitionResult(
            instance.id,
            kind.value,
            TransitionOutcome.SKIPPED,
            status=instance.status,
            detail={"reason": "status_changed"},
        )

    async def _open(self, instance: TournamentInstance) -> TransitionResult:
        kind = TransitionKind.OPEN_REGISTRATION
        self._require_status(instance, S.SCHEDULED.value, S.REGISTERING.value)

        if not await self._set_status(instance, S.REGISTERING.value):
            return self._lost_race(instance, kind)
        return TransitionResult(instance.id, kind.value, TransitionOutcome.APPLIED, instance.status)

    def _check_participants(self, instance: TournamentInstance, registered: int) -> None:
        minimum = instance.min_participants or DEFAULT_MIN_PARTICIPANTS
        if registered < minimum:
            raise InsufficientParticipantsError(instance.id, registered, minimum)

    async def _close(self, instance: TournamentInstance) -> TransitionResult:
        kind = TransitionKind.CLOSE_REGISTRATION
        self._require_status(instance, S.REGISTERING.value, S.REGISTRATION_CLOSED.value)

        registered = await self.store.count_entries(instance.id, EntryStatus.REGISTERED.value)

        try:
            self._check_participants(instance, registered)
        except InsufficientParticipantsError as e:
            logger.info(
                "registration_closed_below_minimum",
                tournament_id=instance.id,
                registered=e.registered,
                minimum=e.minimum,
            )
            applied = await self._set_status(
                instance,
                S.CANCELLED.value,
                participant_count=registered,
                cancellation_reason=NOT_ENOUGH_PARTICIPANTS,
            )
            if not applied:
                return self._lost_race(instance, kind)
            return TransitionResult(
                instance.id,
                kind.value,
                TransitionOutcome.CANCELLED,
                instance.status,
                detail={"reason": NOT_ENOUGH_PARTICIPANTS, "registered": registered},
            )

        fields: dict[str, Any] = {"participant_count": registered}
        if not instance.total_prize_pool:
            entries = await self.store.list_entries(
                instance.id, statuses=[EntryStatus.REGISTERED.value]
            )
            fields["total_prize_pool"] = compute_prize_pool(entries, instance.template)

        if not await self._set_status(instance, S.REGISTRATION_CLOSED.value, **fields):
            return self._lost_race(instance, kind)

        return TransitionResult(
            instance.id,
            kind.value,
            TransitionOutcome.APPLIED,
            instance.status,
            detail={
                "participant_count": registered,
                "total_prize_pool": str(instance.total_prize_pool),
            },
        )

    async def _budget_allows(
        self, instance: TournamentInstance, kind: TransitionKind, calls: int
    ) -> bool:
        if self.budget is None or not self.budget.enabled:
            return True
        if await self.budget.can_afford(calls):
            return True
        logger.warning(
            "snapshot_batch_postponed",
            tournament_id=instance.id,
            transition=kind.value,
            calls=calls,
            budget=await self.budget.status(),
        )
        return False

    def _postponed(self, instance: TournamentInstance, kind: TransitionKind, calls: int):
        return TransitionResult(
            instance.id,
            kind.value,
            TransitionOutcome.POSTPONED,
            instance.status,
            detail={"reason": "snapshot_budget_exhausted", "calls": calls},
        )

    async def _start(self, instance: TournamentInstance) -> TransitionResult:
        kind = TransitionKind.START
        self._require_status(instance, S.REGISTRATION_CLOSED.value, S.ACTIVE.value)

        if self.budget is not None and self.budget.enabled:
            calls = await self.store.count_entries(instance.id, EntryStatus.REGISTERED.value)
            if not await self._budget_allows(instance, kind, calls):
                return self._postponed(instance, kind, calls)

        # Status first: if this write fails nothing has been captured
        if not await self._set_status(instance, S.ACTIVE.value, actual_start_time=self.clock()):
            return self._lost_race(instance, kind)

        # From here on the tournament stays active, with whatever coverage we get
        try:
            batch = await self.snapshots.process_tournament_start(instance.id)
            report = batch.to_dict()
        except Exception as e:
            logger.error(
                "start_snapshots_failed",
                tournament_id=instance.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            report = {"snapshot_type": "start", "error": str(e)}

        try:
            await self.store.update_instance(instance.id, start_snapshot_report=report)
        except StorageError as e:
            logger.error("start_report_store_failed", tournament_id=instance.id, error=str(e))

        logger.info(
            "tournament_started",
            tournament_id=instance.id,
            successful=report.get("successful", 0),
            failed=report.get("failed", 0),
        )
        return TransitionResult(
            instance.id, kind.value, TransitionOutcome.APPLIED, instance.status, detail=report
        )

    async def _end(self, instance: TournamentInstance) -> TransitionResult:
        kind = TransitionKind.END
        self._require_status(instance, S.ACTIVE.value, S.ENDED.value)

        if self.budget is not None and self.budget.enabled:
            entries = await self.store.list_entries(
                instance.id, statuses=[EntryStatus.REGISTERED.value]
            )
            calls = sum(1 for e in entries if e.start_snapshot_id and not e.end_snapshot_id)
            if not await self._budget_allows(instance, kind, calls):
                return self._postponed(instance, kind, calls)

        if not await self._set_status(instance, S.ENDED.value, actual_end_time=self.clock()):
            return self._lost_race(instance, kind)

        # Past this point a failure means manual review, never a retry
        try:
            results = await self.snapshots.process_tournament_end(instance.id)
            await self._store_end_report(instance, results.to_dict())

            if not results.success:
                raise RankingUnavailableError(
                    instance.id,
                    len(results.rankings),
                    details={"excluded": [e.to_dict() for e in results.excluded]},
                )

            prizes = await self.distribute_prizes(instance, results.rankings)
            if prizes["failed"] or prizes["payouts_failed"]:
                return await self._needs_review(
                    instance,
                    kind,
                    f"Prize distribution incomplete: {prizes['failed']} records failed, "
                    f"{prizes['payouts_failed']} payouts failed",
                    detail={"prizes": prizes},
                )

            if not await self._set_status(instance, S.COMPLETE.value):
                return self._lost_race(instance, kind)

        except Exception as e:
            logger.error(
                "tournament_finalization_failed",
                tournament_id=instance.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._needs_review(instance, kind, f"{type(e).__name__}: {e}")

        await self._archive_report(instance, prizes)

        logger.info(
            "tournament_completed",
            tournament_id=instance.id,
            ranked=len(results.rankings),
            winners=prizes["paid_ranks"],
        )
        return TransitionResult(
            instance.id,
            kind.value,
            TransitionOutcome.APPLIED,
            instance.status,
            detail={"ranked": len(results.rankings), "prizes": prizes},
        )

    async def _store_end_report(self, instance: TournamentInstance, report: dict[str, Any]) -> None:
        try:
            await self.store.update_instance(instance.id, end_snapshot_report=report)
        except StorageError as e:
            logger.error("end_report_store_failed", tournament_id=instance.id, error=str(e))

    async def _archive_report(self, instance: TournamentInstance, prizes: dict[str, Any]) -> None:
        """Store the end-of-tournament report. Failures are logged only."""
        try:
            report = await self.snapshots.generate_tournament_report(instance.id)
            report["tournament_name"] = instance.tournament_name
            report["prizes"] = prizes
            await self.store.insert_report(instance.id, report)
        except Exception as e:
            logger.warning("tournament_report_failed", tournament_id=instance.id, error=str(e))

    async def _needs_review(
        self,
        instance: TournamentInstance,
        kind: TransitionKind,
        reason: str,
        detail: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """
        Park an ended instance for manual remediation.

        If this write fails too the instance stays ended, and the next
        pass moves it to needs_review as an interrupted finalization.
        """
        try:
            if not await self._set_status(instance, S.NEEDS_REVIEW.value, review_reason=reason):
                result = self._lost_race(instance, kind)
                result.detail["review_reason"] = reason
                return result
        except StorageError as e:
            logger.error("needs_review_update_failed", tournament_id=instance.id, error=str(e))

        logger.warning("tournament_needs_review", tournament_id=instance.id, reason=reason)
        return TransitionResult(
            instance.id,
            kind.value,
            TransitionOutcome.NEEDS_REVIEW,
            instance.status,
            detail={"reason": reason, **(detail or {})},
        )

    async def _recover(self, instance: TournamentInstance) -> TransitionResult:
        self._require_status(instance, S.ENDED.value, S.NEEDS_REVIEW.value)
        return await self._needs_review(
            instance,
            TransitionKind.RECOVER,
            "Finalization was interrupted after the tournament ended",
        )

    async def _cancel(self, instance: TournamentInstance, reason: str) -> TransitionResult:
        kind = TransitionKind.CANCEL
        validate_transition(instance.status, S.CANCELLED.value)

        if not await self._set_status(instance, S.CANCELLED.value, cancellation_reason=reason):
            return self._lost_race(instance, kind)

        logger.info("tournament_cancelled", tournament_id=instance.id, reason=reason)
        return TransitionResult(
            instance.id,
            kind.value,
            TransitionOutcome.CANCELLED,
            instance.status,
            detail={"reason": reason},
        )

    # Prizes

    async def distribute_prizes(
        self,
        instance: TournamentInstance,
        rankings: list[Ranking],
    ) -> dict[str, Any]:
        """
        Record prizes for the paid ranks and update champion stats.

        Safe to re-run: a champion that already has a prize row for this
        tournament is neither paid nor counted again. A failed insert is
        logged and the remaining winners are still processed.
        """
        table = self.tournament_config.prize_table_for(instance.tier)
        pool = Decimal(str(instance.total_prize_pool or 0))
        percentages = select_percentages(len(rankings), table)
        amounts = calculate_distribution(pool, len(rankings), table)

        summary: dict[str, Any] = {
            "pool": str(pool),
            "paid_ranks": 0,
            "inserted": 0,
            "existing": 0,
            "failed": 0,
            "stats_failed": 0,
            "payouts_paid": 0,
            "payouts_failed": 0,
        }
        pending = []
        paid_champions = set()

        for ranking, percentage, amount in zip(rankings, percentages, amounts):
            if amount <= 0:
                continue
            summary["paid_ranks"] += 1
            paid_champions.add(ranking.champion_id)

            try:
                record = await self.store.get_prize_distribution(instance.id, ranking.champion_id)
                if record is not None:
                    summary["existing"] += 1
                    if record.payout_status == PayoutStatus.PENDING.value:
                        pending.append((ranking, record))
                    continue

                record = await self.store.insert_prize_distribution(
                    tournament_instance_id=instance.id,
                    champion_id=ranking.champion_id,
                    rank=ranking.rank,
                    prize_amount=amount,
                    prize_percentage=percentage,
                    performance_percentage=ranking.performance,
                    payout_status=PayoutStatus.PENDING.value,
                    distributed_at=self.clock(),
                )
                summary["inserted"] += 1
                pending.append((ranking, record))
            except Exception as e:
                summary["failed"] += 1
                logger.error(
                    "prize_record_failed",
                    tournament_id=instance.id,
                    champion_id=ranking.champion_id,
                    rank=ranking.rank,
                    error=str(e),
                )
                continue

            await self._apply_stats(
                instance,
                ranking,
                won=1 if ranking.rank == 1 else 0,
                sol_earned=amount,
                summary=summary,
            )

        if self.stats_include_all_participants:
            for ranking in rankings:
                if ranking.champion_id not in paid_champions:
                    await self._apply_stats(instance, ranking, 0, Decimal("0"), summary)

        if self.escrow is not None and pending:
            await self._execute_payouts(instance, pending, summary)

        logger.info("prizes_distributed", tournament_id=instance.id, **summary)
        return summary

    async def _apply_stats(
        self,
        instance: TournamentInstance,
        ranking: Ranking,
        won: int,
        sol_earned: Decimal,
        summary: dict[str, Any],
    ) -> None:
        try:
            await self.store.apply_champion_result(
                ranking.champion_id, played=1, won=won, sol_earned=sol_earned
            )
        except Exception as e:
            summary["stats_failed"] += 1
            logger.error(
                "champion_stats_update_failed",
                tournament_id=instance.id,
                champion_id=ranking.champion_id,
                error=str(e),
            )

    async def _execute_payouts(
        self,
        instance: TournamentInstance,
        pending: list,
        summary: dict[str, Any],
    ) -> None:
        instructions = [
            PayoutInstruction(
                champion_id=ranking.champion_id,
                wallet_address=ranking.wallet_address,
                amount=record.prize_amount,
                rank=ranking.rank,
            )
            for ranking, record in pending
        ]
        try:
            outcomes = await self.escrow.execute_payouts(instance.id, instructions)
        except Exception as e:
            # Unknown outcome: rows stay pending for manual reconciliation
            summary["payouts_failed"] += len(pending)
            logger.error("payout_execution_failed", tournament_id=instance.id, error=str(e))
            return

        for ranking, record in pending:
            outcome = outcomes.get(ranking.champion_id)
            if outcome is None:
                summary["payouts_failed"] += 1
                continue
            status = PayoutStatus.PAID if outcome.success else PayoutStatus.FAILED
            try:
                await self.store.update_prize_distribution(
                    record.id,
                    payout_status=status.value,
                    transaction_ref=outcome.transaction_ref,
                )
            except StorageError as e:
                logger.error(
                    "payout_status_update_failed",
                    tournament_id=instance.id,
                    champion_id=ranking.champion_id,
                    error=str(e),
                )
            if outcome.success:
                summary["payouts_paid"] += 1
            else:
                summary["payouts_failed"] += 1
                logger.warning(
                    "payout_failed",
                    tournament_id=instance.id,
                    champion_id=ranking.champion_id,
                    error=outcome.error,
                )

    # Monitoring

    async def get_status(self) -> dict[str, Any]:
        """Engine state for monitoring."""
        return {
            "running": self._running,
            "poll_interval_seconds": self.poll_interval,
            "last_pass_at": self._last_pass_at.isoformat() if self._last_pass_at else None,
            "last_pass": self._last_pass_summary,
            "in_flight": await self.guard.in_flight(),
            "rate_limiter": await self.snapshots.rate_limiter.status(),
            "budget": await self.budget.status() if self.budget else {"enabled": False},
        }
