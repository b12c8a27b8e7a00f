"""Wallet snapshot providers.

Provides async access to Solana wallet state with:
- JSON-RPC over httpx
- Retry with exponential backoff
- Error classification
- Priority-ordered fallback across providers (primary -> backup -> fallback)

Total value is the SOL balance. Token holdings are recorded with the
snapshot but not valued.
"""

import asyncio
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

import httpx
import structlog

from walletwars.services.errors import AllProvidersFailedError, ProviderError

logger = structlog.get_logger(__name__)

LAMPORTS_PER_SOL = Decimal("1000000000")
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

# Base58, 32-44 characters
_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

# JSON-RPC error codes worth retrying (node behind, rate limited, internal)
RETRYABLE_RPC_CODES = {-32005, -32603, 429}


def is_valid_solana_address(address: str | None) -> bool:
    """Check that an address is base58 and of plausible length."""
    if not address or not isinstance(address, str):
        return False
    return bool(_ADDRESS_RE.match(address))


@dataclass
class Holding:
    """SPL token balance held by a wallet."""

    mint: str
    amount: str
    decimals: int
    ui_amount: float | None = None
    owner: str | None = None


@dataclass
class BalanceResult:
    """SOL balance of a wallet."""

    amount: Decimal
    lamports: int
    provider: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class WalletSnapshotData:
    """Complete wallet state returned by a provider."""

    address: str
    balance: Decimal
    holdings: list[Holding]
    total_value: Decimal
    timestamp: datetime
    provider: str
    raw: dict[str, Any] = field(default_factory=dict)

    def holdings_as_dicts(self) -> list[dict[str, Any]]:
        return [asdict(h) for h in self.holdings]


def calculate_total_value(balance: Decimal, holdings: list[Holding]) -> Decimal:
    """Total wallet value in SOL. Only SOL counts for now."""
    return balance


class SnapshotProvider(Protocol):
    """Interface consumed by the snapshot manager."""

    name: str

    async def get_balance(self, address: str) -> BalanceResult: ...

    async def get_holdings(self, address: str) -> list[Holding]: ...

    async def get_full_snapshot(self, address: str) -> WalletSnapshotData: ...


class SolanaRpcProvider:
    """
    Solana JSON-RPC wallet provider.

    Supports:
    - getBalance (lamports -> SOL)
    - getParsedTokenAccountsByOwner for SPL holdings
    - Automatic retry with exponential backoff
    """

    def __init__(
        self,
        name: str,
        rpc_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize provider.

        Args:
            name: Provider name recorded with each snapshot
            rpc_url: JSON-RPC endpoint
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts per call
            backoff_base: Seconds for the first backoff, doubled per attempt
            http_client: Optional preconfigured HTTP client
        """
        self.name = name
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "SolanaRpcProvider":
        """Async context manager entry."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def _backoff(self, method: str, attempt: int, reason: str) -> None:
        wait_time = self.backoff_base * 2**attempt
        logger.warning(
            "rpc_retrying",
            provider=self.name,
            method=method,
            reason=reason,
            attempt=attempt,
            wait_time=wait_time,
        )
        await asyncio.sleep(wait_time)

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        """
        Make a JSON-RPC call with retry.

        Returns:
            The ``result`` member of the response

        Raises:
            ProviderError: If the call fails after retries
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        for attempt in range(self.max_retries + 1):
            can_retry = attempt < self.max_retries
            try:
                client = await self._get_client()
                response = await client.post(self.rpc_url, json=payload)
                response.raise_for_status()
                data = response.json()

            except httpx.TimeoutException:
                if can_retry:
                    await self._backoff(method, attempt, "timeout")
                    continue
                raise ProviderError("Request timeout", provider=self.name, retryable=True)

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code == 429 or status_code >= 500:
                    if can_retry:
                        await self._backoff(method, attempt, f"http_{status_code}")
                        continue
                    raise ProviderError(
                        f"HTTP {status_code} from {self.name}",
                        provider=self.name,
                        retryable=True,
                    )
                raise ProviderError(
                    f"HTTP {status_code} from {self.name}: {e.response.text[:200]}",
                    provider=self.name,
                    retryable=False,
                )

            except httpx.HTTPError as e:
                if can_retry:
                    await self._backoff(method, attempt, type(e).__name__)
                    continue
                raise ProviderError(str(e) or type(e).__name__, provider=self.name, retryable=True)

            except ValueError as e:
                raise ProviderError(f"Malformed response: {e}", provider=self.name)

            if not isinstance(data, dict):
                raise ProviderError("Malformed response: not an object", provider=self.name)

            if "error" in data:
                error = data.get("error") or {}
                code = error.get("code")
                message = error.get("message", "Unknown error")
                if code in RETRYABLE_RPC_CODES and can_retry:
                    await self._backoff(method, attempt, f"rpc_{code}")
                    continue
                raise ProviderError(
                    f"RPC error {code}: {message}",
                    provider=self.name,
                    retryable=code in RETRYABLE_RPC_CODES,
                )

            if "result" not in data:
                raise ProviderError("Malformed response: missing result", provider=self.name)
            return data["result"]

        raise ProviderError(f"{method} failed after retries", provider=self.name, retryable=True)

    async def get_balance(self, address: str) -> BalanceResult:
        """
        Get SOL balance for a wallet.

        Raises:
            ProviderError: If the balance cannot be fetched
        """
        result = await self._rpc("getBalance", [address, {"commitment": "confirmed"}])
        lamports = result.get("value") if isinstance(result, dict) else result
        if not isinstance(lamports, int):
            raise ProviderError("Malformed balance response", provider=self.name)

        return BalanceResult(
            amount=Decimal(lamports) / LAMPORTS_PER_SOL,
            lamports=lamports,
            provider=self.name,
            raw=result if isinstance(result, dict) else {"value": result},
        )

    async def get_holdings(self, address: str) -> list[Holding]:
        """
        Get SPL token holdings for a wallet.

        Never raises; returns an empty list on failure so the SOL balance
        alone still makes a usable snapshot.
        """
        try:
            result = await self._rpc(
                "getParsedTokenAccountsByOwner",
                [address, {"programId": TOKEN_PROGRAM_ID}, {"encoding": "jsonParsed"}],
            )
            holdings = []
            for account in result.get("value", []):
                info = account["account"]["data"]["parsed"]["info"]
                token_amount = info["tokenAmount"]
                holdings.append(
                    Holding(
                        mint=info["mint"],
                        amount=str(token_amount["amount"]),
                        decimals=int(token_amount["decimals"]),
                        ui_amount=token_amount.get("uiAmount"),
                        owner=info.get("owner"),
                    )
                )
            return holdings
        except (ProviderError, KeyError, TypeError, AttributeError) as e:
            logger.warning(
                "holdings_fetch_failed",
                provider=self.name,
                address=address[:8],
                error=str(e),
            )
            return []

    async def get_full_snapshot(self, address: str) -> WalletSnapshotData:
        """
        Get complete wallet state.

        Raises:
            ProviderError: If the address is invalid or the balance call fails
        """
        if not is_valid_solana_address(address):
            raise ProviderError(f"Invalid wallet address: {address!r}", provider=self.name)

        balance, holdings = await asyncio.gather(
            self.get_balance(address),
            self.get_holdings(address),
        )
        now = datetime.now(timezone.utc)
        return WalletSnapshotData(
            address=address,
            balance=balance.amount,
            holdings=holdings,
            total_value=calculate_total_value(balance.amount, holdings),
            timestamp=now,
            provider=self.name,
            raw={
                "balance": balance.raw,
                "lamports": balance.lamports,
                "token_accounts": len(holdings),
                "snapshot_time": now.isoformat(),
            },
        )

    async def health_check(self) -> bool:
        """Check provider connectivity."""
        try:
            await self._rpc("getHealth", [])
            return True
        except ProviderError as e:
            logger.error("health_check_failed", provider=self.name, error=str(e))
            return False


class FallbackSnapshotProvider:
    """
    Try providers in priority order; the first success wins.

    When every provider fails, AllProvidersFailedError carries each
    provider's error.
    """

    def __init__(self, providers: list[SnapshotProvider]):
        if not providers:
            raise ValueError("At least one provider is required")
        self.providers = providers
        self.name = "fallback:" + ",".join(p.name for p in providers)

    async def __aenter__(self) -> "FallbackSnapshotProvider":
        for provider in self.providers:
            enter = getattr(provider, "__aenter__", None)
            if enter is not None:
                await enter()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        for provider in self.providers:
            exit_ = getattr(provider, "__aexit__", None)
            if exit_ is not None:
                await exit_(exc_type, exc_val, exc_tb)

    async def _first_success(self, operation: str, address: str):
        errors: dict[str, Exception] = {}
        for provider in self.providers:
            try:
                result = await getattr(provider, operation)(address)
            except ProviderError as e:
                errors[provider.name] = e
                logger.warning(
                    "provider_failed_trying_next",
                    provider=provider.name,
                    operation=operation,
                    error=str(e),
                )
                continue
            if errors:
                logger.info(
                    "provider_fallback_succeeded",
                    provider=provider.name,
                    operation=operation,
                    failed=list(errors),
                )
            return result
        raise AllProvidersFailedError(errors)

    async def get_balance(self, address: str) -> BalanceResult:
        return await self._first_success("get_balance", address)

    async def get_holdings(self, address: str) -> list[Holding]:
        for provider in self.providers:
            holdings = await provider.get_holdings(address)
            if holdings:
                return holdings
        return []

    async def get_full_snapshot(self, address: str) -> WalletSnapshotData:
        return await self._first_success("get_full_snapshot", address)

    async def get_multi_provider_status(self) -> dict[str, Any]:
        """Health of every provider in the chain."""
        statuses = {}
        for priority, provider in enumerate(self.providers, start=1):
            check = getattr(provider, "health_check", None)
            online = await check() if check is not None else None
            statuses[provider.name] = {"online": online, "priority": priority}
        return statuses
