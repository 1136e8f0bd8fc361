from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Any, Dict, Optional
import math
from solders.pubkey import Pubkey
from construct import Struct, Int64ul, Int32ul, Int8ul, Bytes, Flag

LAMPORTS_PER_SOL = 1_000_000_000
SUPPORTED_DEXES = ('raydium', 'pump-fun')


class SignalParseError(Exception):
    """Raised when an upstream pool payload does not match the expected schema"""
    pass


def sol_to_lamports(amount_sol: float) -> int:
    """Convert a SOL amount to integer lamports, rounding down"""
    lamports = Decimal(str(amount_sol)) * LAMPORTS_PER_SOL
    return int(lamports.to_integral_value(rounding=ROUND_DOWN))


def lamports_to_sol(lamports: int) -> float:
    return float(Decimal(lamports) / LAMPORTS_PER_SOL)


def fraction_of(raw_amount: int, fraction: float) -> int:
    """Integer share of a raw on-chain amount, rounding down"""
    share = Decimal(raw_amount) * Decimal(str(fraction))
    return int(share.to_integral_value(rounding=ROUND_DOWN))


def _number(value: Any, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise SignalParseError(f"{field_name} is not numeric: {value!r}") from e
    if not math.isfinite(number) or number < 0:
        raise SignalParseError(f"{field_name} is invalid: {value!r}")
    return number


def _section(parent: Dict[str, Any], key: str, field_name: str) -> Dict[str, Any]:
    """Nested object of a pool record; a missing one reads as empty"""
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SignalParseError(f"{field_name} is not an object: {value!r}")
    return value


@dataclass(frozen=True)
class TokenSignal:
    mint: str
    name: str
    market_cap: float
    liquidity: float
    volume_m5: float
    tx_count_m5: int
    pool_age_minutes: float

    @classmethod
    def from_pool(cls, pool: Dict[str, Any], now: Optional[datetime] = None) -> 'TokenSignal':
        """Build a signal from a GeckoTerminal pool record"""
        if not isinstance(pool, dict):
            raise SignalParseError("pool record is not an object")
        attributes = pool.get('attributes')
        relationships = pool.get('relationships')
        if not isinstance(attributes, dict) or not isinstance(relationships, dict):
            raise SignalParseError("pool record is missing attributes or relationships")

        base_token = _section(relationships, 'base_token', 'base_token')
        base_token_id = _section(base_token, 'data', 'base_token.data').get('id')
        if not isinstance(base_token_id, str) or not base_token_id.startswith('solana_'):
            raise SignalParseError(f"unexpected base token id: {base_token_id!r}")
        mint = base_token_id[len('solana_'):]
        try:
            Pubkey.from_string(mint)
        except ValueError as e:
            raise SignalParseError(f"base token is not a valid mint: {mint!r}") from e

        created_at = attributes.get('pool_created_at')
        try:
            created = datetime.fromisoformat(str(created_at).replace('Z', '+00:00'))
        except ValueError as e:
            raise SignalParseError(f"invalid pool_created_at: {created_at!r}") from e
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        age_minutes = max((now - created).total_seconds() / 60, 0.0)

        transactions = _section(_section(attributes, 'transactions', 'transactions'), 'm5', 'transactions.m5')
        volume = _section(attributes, 'volume_usd', 'volume_usd')
        tx_count = _number(transactions.get('buys') or 0, 'buys') + _number(transactions.get('sells') or 0, 'sells')

        return cls(
            mint=mint,
            name=str(attributes.get('name') or mint),
            market_cap=_number(attributes.get('fdv_usd') or 0, 'fdv_usd'),
            liquidity=_number(attributes.get('reserve_in_usd') or 0, 'reserve_in_usd'),
            volume_m5=_number(volume.get('m5') or 0, 'volume_usd.m5'),
            tx_count_m5=int(tx_count),
            pool_age_minutes=age_minutes,
        )


class SafetyReason(Enum):
    PASSED = "passed"
    FINANCIAL_METRICS_FAIL = "financial-metrics-fail"
    AUTHORITY_PRESENT = "authority-present"
    EXTERNAL_SCORE_FAIL = "external-score-fail"
    RPC_UNAVAILABLE = "rpc-unavailable"
    INVALID_MINT = "invalid-mint"


@dataclass(frozen=True)
class SafetyVerdict:
    is_safe: bool
    reason: SafetyReason
    detail: str = ""

    @classmethod
    def accept(cls, detail: str = "") -> 'SafetyVerdict':
        return cls(is_safe=True, reason=SafetyReason.PASSED, detail=detail)

    @classmethod
    def reject(cls, reason: SafetyReason, detail: str = "") -> 'SafetyVerdict':
        return cls(is_safe=False, reason=reason, detail=detail)


class TradeStage(Enum):
    INITIAL_LAUNCH = "initial_launch"
    REBOUND_ENTRY = "rebound_entry"


class TakeProfitMode(Enum):
    FIXED = "fixed"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class TradeConfiguration:
    entry_size: float           # SOL, display value
    entry_lamports: int         # Amount handed to the executor
    slippage_bps: int
    stop_loss_pct: float        # 0.20 = exit 20% under entry
    trailing_enabled: bool = True
    take_profit_mode: TakeProfitMode = TakeProfitMode.FIXED
    take_profit_pct: float = 1.0
    partial_exit_fraction: float = 0.5


class FailureReason(Enum):
    INVALID_AMOUNT = "invalid-amount"
    NO_QUOTE = "no-quote"
    NO_ROUTE = "no-route"
    SIGNING_ERROR = "signing-error"
    RELAY_REJECTED = "relay-rejected"
    RATE_LIMITED = "rate-limited"
    CURVE_UNAVAILABLE = "curve-unavailable"
    NETWORK_ERROR = "network-error"


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    bundle_id: Optional[str] = None
    failure: Optional[FailureReason] = None
    detail: str = ""

    @classmethod
    def ok(cls, bundle_id: str) -> 'ExecutionResult':
        return cls(success=True, bundle_id=bundle_id)

    @classmethod
    def failed(cls, failure: FailureReason, detail: str = "") -> 'ExecutionResult':
        return cls(success=False, failure=failure, detail=detail)


@dataclass
class BondingCurveAccount:
    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool

    @classmethod
    def from_buffer(cls, data: bytes):
        # Skip 8-byte discriminator
        CURVE_STRUCT = Struct(
            "virtual_token_reserves" / Int64ul,
            "virtual_sol_reserves" / Int64ul,
            "real_token_reserves" / Int64ul,
            "real_sol_reserves" / Int64ul,
            "token_total_supply" / Int64ul,
            "complete" / Flag
        )
        parsed = CURVE_STRUCT.parse(data[8:])
        return cls(
            virtual_token_reserves=parsed.virtual_token_reserves,
            virtual_sol_reserves=parsed.virtual_sol_reserves,
            real_token_reserves=parsed.real_token_reserves,
            real_sol_reserves=parsed.real_sol_reserves,
            token_total_supply=parsed.token_total_supply,
            complete=parsed.complete
        )


MINT_LAYOUT = Struct(
    "mint_authority_option" / Int32ul,
    "mint_authority" / Bytes(32),
    "supply" / Int64ul,
    "decimals" / Int8ul,
    "is_initialized" / Flag,
    "freeze_authority_option" / Int32ul,
    "freeze_authority" / Bytes(32),
)


@dataclass
class MintAccount:
    """SPL mint account; Token-2022 extensions after the base layout are ignored"""
    mint_authority: Optional[Pubkey]
    freeze_authority: Optional[Pubkey]
    supply: int
    decimals: int
    is_initialized: bool

    @classmethod
    def from_buffer(cls, data: bytes):
        parsed = MINT_LAYOUT.parse(bytes(data))
        return cls(
            mint_authority=Pubkey.from_bytes(parsed.mint_authority) if parsed.mint_authority_option else None,
            freeze_authority=Pubkey.from_bytes(parsed.freeze_authority) if parsed.freeze_authority_option else None,
            supply=parsed.supply,
            decimals=parsed.decimals,
            is_initialized=parsed.is_initialized,
        )
