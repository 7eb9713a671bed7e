"""
Position lifecycle data models.

A Position is mutable only while ACTIVE. Terminal outcomes are separate
records (ClosedPosition / ForceClosedPosition) so exit-only fields never
exist on a live position.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

from errors import ValidationError

_EPSILON = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _to_dec(value: Any) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def _ts(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


def _to_ts(value: Optional[str]) -> Optional[datetime]:
    return None if value is None else datetime.fromisoformat(value)


def compute_unrealized_pnl(entry_price: Decimal, current_price: Decimal,
                           quantity: Decimal) -> Decimal:
    return (current_price - entry_price) * quantity


def compute_pnl_percentage(pnl: Decimal, entry_price: Decimal,
                           quantity: Decimal) -> Decimal:
    cost = entry_price * quantity
    if cost == 0:
        return Decimal("0")
    return pnl / cost * 100


def compute_risk_reward(entry_price: Decimal, stop_loss: Decimal,
                        take_profit: Decimal) -> Decimal:
    risk = entry_price - stop_loss
    if risk <= 0:
        return Decimal("0")
    return (take_profit - entry_price) / risk


class PositionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    FORCE_CLOSED = "force_closed"


class CloseReason(str, Enum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    MANUAL = "manual"
    SHUTDOWN = "shutdown"
    FORCE_CLOSE = "force_close"


class SignalType(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


@dataclass
class PositionMetadata:
    """Entry context plus extrema tracked while the position is live."""
    confidence_score: float
    initial_stop_loss: Decimal
    initial_take_profit: Decimal
    risk_reward_ratio: Decimal
    highest_price: Optional[Decimal] = None
    lowest_price: Optional[Decimal] = None
    max_drawdown: Optional[Decimal] = None
    volatility: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence_score": self.confidence_score,
            "initial_stop_loss": _dec(self.initial_stop_loss),
            "initial_take_profit": _dec(self.initial_take_profit),
            "risk_reward_ratio": _dec(self.risk_reward_ratio),
            "highest_price": _dec(self.highest_price),
            "lowest_price": _dec(self.lowest_price),
            "max_drawdown": _dec(self.max_drawdown),
            "volatility": self.volatility,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionMetadata":
        return cls(
            confidence_score=float(data.get("confidence_score", 0.0)),
            initial_stop_loss=_to_dec(data["initial_stop_loss"]),
            initial_take_profit=_to_dec(data["initial_take_profit"]),
            risk_reward_ratio=_to_dec(data.get("risk_reward_ratio", "0")),
            highest_price=_to_dec(data.get("highest_price")),
            lowest_price=_to_dec(data.get("lowest_price")),
            max_drawdown=_to_dec(data.get("max_drawdown")),
            volatility=data.get("volatility"),
        )


@dataclass
class Position:
    """A tracked long position in a single token."""
    id: str
    token_address: str
    entry_price: Decimal
    quantity: Decimal
    stop_loss: Decimal
    take_profit: Decimal
    current_price: Decimal
    unrealized_pnl: Decimal
    pnl_percentage: Decimal
    entry_timestamp: datetime
    last_updated: datetime
    trade_signature: str
    metadata: PositionMetadata
    status: PositionStatus = PositionStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    def _require_active(self, operation: str) -> None:
        if not self.is_active:
            raise ValidationError(
                f"cannot {operation} a {self.status.value} position {self.id}",
                token_address=self.token_address, code="terminal_position")

    def touch(self, now: Optional[datetime] = None) -> None:
        """Advance last_updated, keeping it strictly increasing."""
        now = now or utcnow()
        self.last_updated = max(now, self.last_updated + _EPSILON)

    def mark_price(self, price: Decimal, now: Optional[datetime] = None) -> None:
        """Refresh mark-to-market fields and tracked extrema."""
        self._require_active("mark")
        self.current_price = price
        self.unrealized_pnl = compute_unrealized_pnl(self.entry_price, price, self.quantity)
        self.pnl_percentage = compute_pnl_percentage(
            self.unrealized_pnl, self.entry_price, self.quantity)
        meta = self.metadata
        if meta.highest_price is None or price > meta.highest_price:
            meta.highest_price = price
        if meta.lowest_price is None or price < meta.lowest_price:
            meta.lowest_price = price
        if meta.highest_price:
            drawdown = (meta.highest_price - price) / meta.highest_price * 100
            if meta.max_drawdown is None or drawdown > meta.max_drawdown:
                meta.max_drawdown = drawdown
        self.touch(now)

    def raise_stop_loss(self, value: Decimal) -> bool:
        """Move the stop up. Returns False (no change) if value would lower it."""
        self._require_active("adjust stop on")
        if value <= self.stop_loss:
            return False
        self.stop_loss = value
        self.touch()
        return True

    def set_take_profit(self, value: Decimal) -> bool:
        self._require_active("adjust target on")
        if value == self.take_profit:
            return False
        self.take_profit = value
        self.touch()
        return True

    def reset_levels(self, stop_loss: Decimal, take_profit: Decimal) -> None:
        """Replace both levels wholesale. Only used when correcting rehydrated data."""
        self._require_active("reset levels on")
        self.stop_loss = stop_loss
        self.take_profit = take_profit
        self.touch()

    def terminate(self, status: PositionStatus) -> None:
        self._require_active("terminate")
        if status == PositionStatus.ACTIVE:
            raise ValidationError("terminal status required", token_address=self.token_address)
        self.status = status
        self.touch()

    def snapshot(self) -> "Position":
        return replace(self, metadata=replace(self.metadata))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "token_address": self.token_address,
            "entry_price": _dec(self.entry_price),
            "quantity": _dec(self.quantity),
            "stop_loss": _dec(self.stop_loss),
            "take_profit": _dec(self.take_profit),
            "current_price": _dec(self.current_price),
            "unrealized_pnl": _dec(self.unrealized_pnl),
            "pnl_percentage": _dec(self.pnl_percentage),
            "entry_timestamp": _ts(self.entry_timestamp),
            "last_updated": _ts(self.last_updated),
            "trade_signature": self.trade_signature,
            "status": self.status.value,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        return cls(
            id=data["id"],
            token_address=data["token_address"],
            entry_price=_to_dec(data["entry_price"]),
            quantity=_to_dec(data["quantity"]),
            stop_loss=_to_dec(data["stop_loss"]),
            take_profit=_to_dec(data["take_profit"]),
            current_price=_to_dec(data["current_price"]),
            unrealized_pnl=_to_dec(data["unrealized_pnl"]),
            pnl_percentage=_to_dec(data["pnl_percentage"]),
            entry_timestamp=_to_ts(data["entry_timestamp"]),
            last_updated=_to_ts(data["last_updated"]),
            trade_signature=data.get("trade_signature", ""),
            metadata=PositionMetadata.from_dict(data["metadata"]),
            status=PositionStatus(data.get("status", PositionStatus.ACTIVE.value)),
        )


# ── Terminal variants ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ClosedPosition:
    """A position whose exit settled on the venue."""
    position: Position
    exit_price: Decimal
    exit_timestamp: datetime
    realized_pnl: Decimal
    pnl_percentage: Decimal
    close_reason: str
    trade: Optional["Trade"] = None

    status = PositionStatus.CLOSED

    @property
    def id(self) -> str:
        return self.position.id

    @property
    def token_address(self) -> str:
        return self.position.token_address

    def to_dict(self) -> Dict[str, Any]:
        data = self.position.to_dict()
        data.update({
            "status": PositionStatus.CLOSED.value,
            "exit_price": _dec(self.exit_price),
            "exit_timestamp": _ts(self.exit_timestamp),
            "realized_pnl": _dec(self.realized_pnl),
            "pnl_percentage": _dec(self.pnl_percentage),
            "close_reason": self.close_reason,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClosedPosition":
        return cls(
            position=Position.from_dict(data),
            exit_price=_to_dec(data["exit_price"]),
            exit_timestamp=_to_ts(data["exit_timestamp"]),
            realized_pnl=_to_dec(data["realized_pnl"]),
            pnl_percentage=_to_dec(data["pnl_percentage"]),
            close_reason=data.get("close_reason", CloseReason.MANUAL.value),
        )


@dataclass(frozen=True)
class ForceClosedPosition:
    """A position dropped during shutdown without venue confirmation."""
    position: Position
    exit_timestamp: datetime
    error: str = ""
    close_reason: str = CloseReason.FORCE_CLOSE.value

    status = PositionStatus.FORCE_CLOSED

    @property
    def id(self) -> str:
        return self.position.id

    @property
    def token_address(self) -> str:
        return self.position.token_address

    def to_dict(self) -> Dict[str, Any]:
        data = self.position.to_dict()
        data.update({
            "status": PositionStatus.FORCE_CLOSED.value,
            "exit_timestamp": _ts(self.exit_timestamp),
            "close_reason": self.close_reason,
            "force_close_error": self.error,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForceClosedPosition":
        return cls(
            position=Position.from_dict(data),
            exit_timestamp=_to_ts(data["exit_timestamp"]),
            error=data.get("force_close_error", ""),
            close_reason=data.get("close_reason", CloseReason.FORCE_CLOSE.value),
        )


PositionRecord = Union[Position, ClosedPosition, ForceClosedPosition]


def position_from_record(data: Dict[str, Any]) -> PositionRecord:
    """Rebuild the right variant from a persisted record."""
    status = PositionStatus(data.get("status", PositionStatus.ACTIVE.value))
    if status == PositionStatus.CLOSED:
        return ClosedPosition.from_dict(data)
    if status == PositionStatus.FORCE_CLOSED:
        return ForceClosedPosition.from_dict(data)
    return Position.from_dict(data)


# ── Signals & trades ─────────────────────────────────────────────────────────

@dataclass
class TradingSignal:
    """Ephemeral entry/exit intent handed to the execution venue."""
    token_address: str
    signal_type: SignalType
    price: Decimal
    quantity: Decimal
    confidence: float
    timestamp: datetime = field(default_factory=utcnow)
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    reason: Optional[str] = None
    slippage_bps: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_address": self.token_address,
            "signal_type": self.signal_type.value,
            "price": _dec(self.price),
            "quantity": _dec(self.quantity),
            "confidence": self.confidence,
            "timestamp": _ts(self.timestamp),
            "stop_loss": _dec(self.stop_loss),
            "take_profit": _dec(self.take_profit),
            "reason": self.reason,
            "slippage_bps": self.slippage_bps,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """What the venue reports back for a single execution attempt."""
    success: bool
    timestamp: datetime = field(default_factory=utcnow)
    signature: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    fees: Decimal = Decimal("0")
    slippage: Decimal = Decimal("0")


@dataclass(frozen=True)
class Trade:
    """Settled execution linked to a position."""
    position_id: str
    token_address: str
    trade_type: SignalType
    price: Decimal
    quantity: Decimal
    timestamp: datetime
    signature: str
    fees: Decimal = Decimal("0")
    slippage: Decimal = Decimal("0")
    realized_pnl: Optional[Decimal] = None
    pnl_percentage: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "token_address": self.token_address,
            "trade_type": self.trade_type.value,
            "price": _dec(self.price),
            "quantity": _dec(self.quantity),
            "timestamp": _ts(self.timestamp),
            "signature": self.signature,
            "fees": _dec(self.fees),
            "slippage": _dec(self.slippage),
            "realized_pnl": _dec(self.realized_pnl),
            "pnl_percentage": _dec(self.pnl_percentage),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trade":
        return cls(
            position_id=data["position_id"],
            token_address=data["token_address"],
            trade_type=SignalType(data["trade_type"]),
            price=_to_dec(data["price"]),
            quantity=_to_dec(data["quantity"]),
            timestamp=_to_ts(data["timestamp"]),
            signature=data.get("signature", ""),
            fees=_to_dec(data.get("fees", "0")),
            slippage=_to_dec(data.get("slippage", "0")),
            realized_pnl=_to_dec(data.get("realized_pnl")),
            pnl_percentage=_to_dec(data.get("pnl_percentage")),
        )


@dataclass(frozen=True)
class FailedTrade:
    """Audit record of a rejected or erroring execution attempt."""
    token_address: str
    trade_type: SignalType
    price: Decimal
    quantity: Decimal
    timestamp: datetime
    error: str
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_address": self.token_address,
            "trade_type": self.trade_type.value,
            "price": _dec(self.price),
            "quantity": _dec(self.quantity),
            "timestamp": _ts(self.timestamp),
            "error": self.error,
            "error_code": self.error_code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailedTrade":
        return cls(
            token_address=data["token_address"],
            trade_type=SignalType(data["trade_type"]),
            price=_to_dec(data["price"]),
            quantity=_to_dec(data["quantity"]),
            timestamp=_to_ts(data["timestamp"]),
            error=data.get("error", ""),
            error_code=data.get("error_code"),
        )


# ── Market inputs ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MarketMetrics:
    """Per-round market inputs for a single token."""
    price: Decimal
    volatility: float = 0.0
    sample_count: int = 0
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class TokenSnapshot:
    """Token state as seen by the signal source."""
    address: str
    price: Decimal
    symbol: str = ""
    name: str = ""
    volume_24h: float = 0.0
    market_cap: float = 0.0
    holder_count: int = 0
    sentiment_score: float = 0.0
    holder_score: float = 0.0
    risk_score: float = 0.0
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "price": _dec(self.price),
            "symbol": self.symbol,
            "name": self.name,
            "volume_24h": self.volume_24h,
            "market_cap": self.market_cap,
            "holder_count": self.holder_count,
            "sentiment_score": self.sentiment_score,
            "holder_score": self.holder_score,
            "risk_score": self.risk_score,
            "updated_at": _ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenSnapshot":
        return cls(
            address=data["address"],
            price=_to_dec(data["price"]),
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            volume_24h=float(data.get("volume_24h", 0.0)),
            market_cap=float(data.get("market_cap", 0.0)),
            holder_count=int(data.get("holder_count", 0)),
            sentiment_score=float(data.get("sentiment_score", 0.0)),
            holder_score=float(data.get("holder_score", 0.0)),
            risk_score=float(data.get("risk_score", 0.0)),
            updated_at=_to_ts(data.get("updated_at")) or utcnow(),
        )
