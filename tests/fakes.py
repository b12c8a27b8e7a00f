"""In-memory collaborators for engine tests.

FakeRecordStore keeps transient ORM objects in dicts and supports failure
injection per method. ScriptedProvider returns scripted wallet values and
can fail for chosen addresses.
"""

import asyncio
import math
from collections import Counter, defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from walletwars.models.domain import (
    Champion,
    ChampionStats,
    EntryStatus,
    PrizeDistribution,
    TournamentEntry,
    TournamentInstance,
    TournamentReport,
    TournamentStatus,
    TournamentTemplate,
    WalletSnapshot,
)
from walletwars.services.errors import ProviderError, StorageError
from walletwars.services.store.base import RecordStore, apply_result_to_stats
from walletwars.services.wallet_client.providers import (
    BalanceResult,
    Holding,
    WalletSnapshotData,
)

BASE58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

T0 = datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)


def wallet_address(n: int) -> str:
    """Deterministic, valid-looking Solana address for champion ``n``."""
    digits = ""
    while True:
        n, rem = divmod(n, 58)
        digits = BASE58[rem] + digits
        if n == 0:
            break
    return ("Champ" + digits).ljust(44, "1")


class FakeClock:
    """Manually advanced clock with a sleep that advances it."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeRecordStore(RecordStore):
    """RecordStore held in memory."""

    def __init__(self):
        self.champions: dict[int, Champion] = {}
        self.templates: dict[int, TournamentTemplate] = {}
        self.instances: dict[int, TournamentInstance] = {}
        self.entries: dict[int, TournamentEntry] = {}
        self.snapshots: dict[int, WalletSnapshot] = {}
        self.prizes: dict[int, PrizeDistribution] = {}
        self.stats: dict[int, ChampionStats] = {}
        self.reports: list[TournamentReport] = []

        self.calls: Counter = Counter()
        self.status_history: dict[int, list[str]] = defaultdict(list)
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._next_id = 0

    # Test helpers

    def fail(self, method: str, times: int = 1, error: Exception | None = None) -> None:
        """Make the next ``times`` calls of ``method`` raise."""
        for _ in range(times):
            self._failures[method].append(
                error or StorageError(f"{method} unavailable", operation=method)
            )

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        if self._failures[method]:
            raise self._failures[method].pop(0)

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def add_champion(self, n: int, name: str | None = None) -> Champion:
        champion = Champion(
            id=self._new_id(),
            wallet_address=wallet_address(n),
            champion_name=name or f"champion-{n}",
        )
        self.champions[champion.id] = champion
        return champion

    def add_template(self, **fields: Any) -> TournamentTemplate:
        data = {
            "name": "Pure Wallet Bronze League",
            "tournament_type": "weekly",
            "trading_style": "pure_wallet",
            "tier": "bronze",
            "entry_fee": Decimal("0.01"),
            "max_participants": 100,
            "prize_pool_percentage": Decimal("85"),
            "is_active": True,
        }
        data.update(fields)
        template = TournamentTemplate(id=self._new_id(), **data)
        self.templates[template.id] = template
        return template

    def add_instance(
        self,
        status: str = TournamentStatus.SCHEDULED.value,
        start_time: datetime = T0,
        template: TournamentTemplate | None = None,
        **fields: Any,
    ) -> TournamentInstance:
        data = {
            "tournament_name": "Pure Wallet Bronze League - Oct 19, 2026",
            "registration_opens": start_time - timedelta(days=3),
            "registration_closes": start_time - timedelta(minutes=10),
            "end_time": start_time + timedelta(days=7),
            "participant_count": 0,
            "total_prize_pool": Decimal("0"),
            "min_participants": 2,
            "deployment_metadata": {"tier": template.tier if template else None},
            "actual_start_time": None,
            "actual_end_time": None,
            "cancellation_reason": None,
            "review_reason": None,
            "start_snapshot_report": None,
            "end_snapshot_report": None,
        }
        data.update(fields)
        instance = TournamentInstance(
            id=self._new_id(),
            status=status,
            start_time=start_time,
            template_id=template.id if template else None,
            **data,
        )
        instance.template = template
        self.instances[instance.id] = instance
        self.status_history[instance.id].append(status)
        return instance

    def add_entry(
        self,
        instance: TournamentInstance,
        champion: Champion,
        registered_at: datetime | None = None,
        entry_fee_paid: Decimal = Decimal("0.1"),
        status: str = EntryStatus.REGISTERED.value,
    ) -> TournamentEntry:
        entry = TournamentEntry(
            id=self._new_id(),
            tournament_instance_id=instance.id,
            champion_id=champion.id,
            entry_fee_paid=entry_fee_paid,
            trading_style="pure_wallet",
            status=status,
            registered_at=registered_at or instance.registration_opens,
            start_snapshot_id=None,
            end_snapshot_id=None,
        )
        entry.champion = champion
        self.entries[entry.id] = entry
        return entry

    def add_snapshot(
        self, entry: TournamentEntry, snapshot_type: str, value: Decimal
    ) -> WalletSnapshot:
        snapshot = WalletSnapshot(
            id=self._new_id(),
            entry_id=entry.id,
            wallet_address=entry.wallet_address,
            snapshot_type=snapshot_type,
            balance=value,
            holdings=[],
            total_value=value,
            provider="seed",
            captured_at=T0,
            raw_response={},
        )
        self.snapshots[snapshot.id] = snapshot
        return snapshot

    def snapshots_of(self, instance_id: int, snapshot_type: str) -> list[WalletSnapshot]:
        entry_ids = {e.id for e in self.entries.values() if e.tournament_instance_id == instance_id}
        return [
            s
            for s in self.snapshots.values()
            if s.entry_id in entry_ids and s.snapshot_type == snapshot_type
        ]

    # Instances

    async def list_instances(self, statuses: Iterable[str]) -> list[TournamentInstance]:
        self._enter("list_instances")
        wanted = set(statuses)
        return sorted(
            (i for i in self.instances.values() if i.status in wanted),
            key=lambda i: i.start_time,
        )

    async def get_instance(self, instance_id: int) -> TournamentInstance | None:
        self._enter("get_instance")
        return self.instances.get(instance_id)

    async def update_instance(
        self,
        instance_id: int,
        expected_status: str | None = None,
        **fields: Any,
    ) -> bool:
        self._enter("update_instance")
        instance = self.instances.get(instance_id)
        if instance is None:
            return False
        if expected_status is not None and instance.status != expected_status:
            return False
        for name, value in fields.items():
            setattr(instance, name, value)
        if "status" in fields:
            self.status_history[instance_id].append(fields["status"])
        return True

    async def insert_instance(self, **fields: Any) -> TournamentInstance:
        self._enter("insert_instance")
        template = self.templates.get(fields.get("template_id"))
        instance = TournamentInstance(id=self._new_id(), **fields)
        instance.template = template
        self.instances[instance.id] = instance
        self.status_history[instance.id].append(instance.status)
        return instance

    async def find_instances(
        self,
        start_from: datetime,
        start_to: datetime,
        template_id: int | None = None,
        tier: str | None = None,
        exclude_statuses: Iterable[str] = (),
    ) -> list[TournamentInstance]:
        self._enter("find_instances")
        excluded = set(exclude_statuses)
        found = []
        for instance in self.instances.values():
            if not start_from <= instance.start_time <= start_to:
                continue
            if template_id is not None and instance.template_id != template_id:
                continue
            if tier is not None and instance.tier != tier:
                continue
            if instance.status in excluded:
                continue
            found.append(instance)
        return sorted(found, key=lambda i: i.start_time)

    async def get_or_create_template(self, name: str, **fields: Any) -> TournamentTemplate:
        self._enter("get_or_create_template")
        for template in self.templates.values():
            if template.name == name:
                return template
        return self.add_template(name=name, **fields)

    # Entries

    async def list_entries(
        self,
        instance_id: int,
        statuses: Iterable[str] | None = None,
    ) -> list[TournamentEntry]:
        self._enter("list_entries")
        wanted = set(statuses) if statuses is not None else None
        return sorted(
            (
                e
                for e in self.entries.values()
                if e.tournament_instance_id == instance_id
                and (wanted is None or e.status in wanted)
            ),
            key=lambda e: (e.registered_at, e.id),
        )

    async def count_entries(self, instance_id: int, status: str) -> int:
        self._enter("count_entries")
        return sum(
            1
            for e in self.entries.values()
            if e.tournament_instance_id == instance_id and e.status == status
        )

    async def update_entry(self, entry_id: int, **fields: Any) -> None:
        self._enter("update_entry")
        entry = self.entries[entry_id]
        for name, value in fields.items():
            setattr(entry, name, value)

    # Snapshots

    async def insert_snapshot(self, **fields: Any) -> WalletSnapshot:
        self._enter("insert_snapshot")
        for existing in self.snapshots.values():
            if (existing.entry_id, existing.snapshot_type) == (
                fields["entry_id"],
                fields["snapshot_type"],
            ):
                raise StorageError("duplicate snapshot", operation="insert_snapshot")
        snapshot = WalletSnapshot(id=self._new_id(), **fields)
        self.snapshots[snapshot.id] = snapshot
        return snapshot

    async def find_snapshot(self, entry_id: int, snapshot_type: str) -> WalletSnapshot | None:
        self._enter("find_snapshot")
        for snapshot in self.snapshots.values():
            if snapshot.entry_id == entry_id and snapshot.snapshot_type == snapshot_type:
                return snapshot
        return None

    async def get_snapshots(self, snapshot_ids: Iterable[int]) -> dict[int, WalletSnapshot]:
        self._enter("get_snapshots")
        return {sid: self.snapshots[sid] for sid in snapshot_ids if sid in self.snapshots}

    # Prizes and stats

    async def get_prize_distribution(
        self, instance_id: int, champion_id: int
    ) -> PrizeDistribution | None:
        self._enter("get_prize_distribution")
        for prize in self.prizes.values():
            if (prize.tournament_instance_id, prize.champion_id) == (instance_id, champion_id):
                return prize
        return None

    async def list_prize_distributions(self, instance_id: int) -> list[PrizeDistribution]:
        self._enter("list_prize_distributions")
        return sorted(
            (p for p in self.prizes.values() if p.tournament_instance_id == instance_id),
            key=lambda p: p.rank,
        )

    async def insert_prize_distribution(self, **fields: Any) -> PrizeDistribution:
        self._enter("insert_prize_distribution")
        for prize in self.prizes.values():
            if (prize.tournament_instance_id, prize.champion_id) == (
                fields["tournament_instance_id"],
                fields["champion_id"],
            ):
                raise StorageError("duplicate prize", operation="insert_prize_distribution")
        prize = PrizeDistribution(id=self._new_id(), transaction_ref=None, **fields)
        self.prizes[prize.id] = prize
        return prize

    async def update_prize_distribution(self, distribution_id: int, **fields: Any) -> None:
        self._enter("update_prize_distribution")
        prize = self.prizes[distribution_id]
        for name, value in fields.items():
            setattr(prize, name, value)

    async def apply_champion_result(
        self,
        champion_id: int,
        played: int = 1,
        won: int = 0,
        sol_earned: Decimal = Decimal("0"),
    ) -> ChampionStats:
        self._enter("apply_champion_result")
        stats = self.stats.get(champion_id)
        if stats is None:
            stats = ChampionStats(
                id=self._new_id(),
                champion_id=champion_id,
                tournaments_played=0,
                tournaments_won=0,
                total_sol_earned=Decimal("0"),
                current_win_streak=0,
                best_win_streak=0,
            )
            self.stats[champion_id] = stats
        return apply_result_to_stats(stats, played, won, sol_earned)

    # Reports

    async def insert_report(self, instance_id: int, report_data: dict[str, Any]) -> TournamentReport:
        self._enter("insert_report")
        report = TournamentReport(
            id=self._new_id(),
            tournament_instance_id=instance_id,
            report_data=report_data,
            created_at=T0,
        )
        self.reports.append(report)
        return report


class ScriptedProvider:
    """
    Snapshot provider returning scripted SOL values.

    ``values`` maps an address to one value or to a list consumed per
    call (start value first, then end value).
    """

    def __init__(
        self,
        values: dict[str, Decimal | list[Decimal]] | None = None,
        failing: Iterable[str] = (),
        default: Decimal = Decimal("1"),
        delay: float = 0.0,
        name: str = "scripted",
        online: bool = True,
    ):
        self.values = {k: list(v) if isinstance(v, list) else v for k, v in (values or {}).items()}
        self.failing = set(failing)
        self.default = default
        self.delay = delay
        self.name = name
        self.online = online
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _next_value(self, address: str) -> Decimal:
        value = self.values.get(address, self.default)
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else value[0]
        return value

    async def get_balance(self, address: str) -> BalanceResult:
        if address in self.failing:
            raise ProviderError("RPC unavailable", provider=self.name, retryable=True)
        amount = self._next_value(address)
        return BalanceResult(amount=amount, lamports=int(amount * 10**9), provider=self.name)

    async def get_holdings(self, address: str) -> list[Holding]:
        return []

    async def health_check(self) -> bool:
        return self.online

    async def get_full_snapshot(self, address: str) -> WalletSnapshotData:
        self.calls.append(address)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            balance = await self.get_balance(address)
        finally:
            self.in_flight -= 1
        return WalletSnapshotData(
            address=address,
            balance=balance.amount,
            holdings=[],
            total_value=balance.amount,
            timestamp=T0,
            provider=self.name,
            raw={"lamports": balance.lamports},
        )


class UnlimitedRateLimiter:
    """Rate limiter that admits everything and counts acquisitions."""

    def __init__(self):
        self.acquired = 0

    async def acquire(self) -> float:
        self.acquired += 1
        return 0.0

    async def status(self) -> dict[str, Any]:
        return {"used": self.acquired, "limit": None, "window": None, "available": None}


def seed_tournament(
    store: FakeRecordStore,
    entrants: int,
    status: str = TournamentStatus.REGISTRATION_CLOSED.value,
    **instance_fields: Any,
) -> tuple[TournamentInstance, list[TournamentEntry]]:
    """Create a bronze tournament with ``entrants`` registered champions."""
    template = store.add_template()
    instance = store.add_instance(status=status, template=template, **instance_fields)
    entries = []
    for n in range(1, entrants + 1):
        champion = store.add_champion(n)
        entries.append(
            store.add_entry(
                instance,
                champion,
                registered_at=instance.registration_opens + timedelta(minutes=n),
            )
        )
    return instance, entries


class MockRedis:
    """
    Minimal async Redis for guard, budget and rate limiter tests.

    Registered scripts are matched by the commands they issue: the sliding
    window script runs against in-memory sorted sets, anything else is the
    owner-checked delete used to release guards.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expirations: dict[str, int] = {}
        self.zsets: dict[str, dict[str, float]] = defaultdict(dict)

    async def set(self, key, value, nx=False, px=None, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        if px is not None:
            self.expirations[key] = px
        return True

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def mget(self, keys):
        return [self.data.get(k) for k in keys]

    async def scan_iter(self, match=None):
        prefix = match.rstrip("*") if match else ""
        for key in list(self.data):
            if key.startswith(prefix):
                yield key.encode()

    async def zremrangebyscore(self, key, low, high):
        zset = self.zsets[key]
        high = float(high)
        removed = [m for m, score in zset.items() if score <= high]
        for member in removed:
            del zset[member]
        return len(removed)

    async def zcard(self, key):
        return len(self.zsets[key])

    def register_script(self, script):
        if "ZREMRANGEBYSCORE" in script:
            return self._sliding_window

        async def release(keys, args):
            if self.data.get(keys[0]) == args[0]:
                del self.data[keys[0]]
                return 1
            return 0

        return release

    async def _sliding_window(self, keys, args):
        key = keys[0]
        limit, window, now, member = int(args[0]), float(args[1]), float(args[2]), args[3]
        await self.zremrangebyscore(key, "-inf", now - window)

        zset = self.zsets[key]
        if len(zset) < limit:
            zset[member] = now
            self.expirations[key] = math.ceil(window * 1000)
            return [1, b"0"]

        oldest = min(zset.values())
        return [0, str(oldest + window - now).encode()]

    def pipeline(self, transaction=True):
        return MockPipeline(self)


class MockPipeline:
    def __init__(self, redis):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    def incrby(self, key, amount):
        self.commands.append(("incrby", key, amount))
        return self

    def expire(self, key, seconds):
        self.commands.append(("expire", key, seconds))
        return self

    async def execute(self):
        results = []
        for command, key, value in self.commands:
            if command == "incrby":
                current = int(self.redis.data.get(key, 0)) + value
                self.redis.data[key] = str(current)
                results.append(current)
            else:
                self.redis.expirations[key] = value * 1000
                results.append(True)
        self.commands = []
        return results


class ManualClock:
    """Settable UTC clock for the engine and scheduler."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


