"""
Execution venues — where signals are actually settled.

DryRunVenue   — simulated immediate fills (paper trading, tests)
HttpSwapVenue — live swaps through a REST swap API

Both honour the same contract: execute() never raises for a venue-side
failure, it returns ExecutionResult(success=False, error=...).
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import httpx
from loguru import logger

from config import TradingConfig, VenueConfig
from errors import FatalError, TransientError
from position_models import ExecutionResult, SignalType, TradingSignal

_BPS = Decimal("10000")


class DryRunVenue:
    """Fills every signal at its own price, minus a simulated fee."""

    def __init__(self, cfg: VenueConfig):
        self.cfg = cfg
        self._balance = cfg.simulated_balance
        self._counter = 0
        self._fail_tokens: Dict[str, str] = {}
        self._fail_next: int = 0
        self.executed: int = 0
        self.rejected: int = 0
        logger.info(f"Initialized dry-run venue (balance={self._balance})")

    async def connect(self) -> bool:
        logger.info("[SIM] Venue ready")
        return True

    async def disconnect(self) -> None:
        pass

    def fail_token(self, token_address: str, error: str = "simulated rejection") -> None:
        """Reject every execution for token_address until cleared."""
        self._fail_tokens[token_address] = error

    def clear_failures(self) -> None:
        self._fail_tokens.clear()
        self._fail_next = 0

    def fail_next(self, count: int = 1) -> None:
        self._fail_next += count

    def _gen_signature(self) -> str:
        self._counter += 1
        return f"sim_{self._counter}_{datetime.now().timestamp()}"

    async def execute(self, signal: TradingSignal) -> ExecutionResult:
        error = self._fail_tokens.get(signal.token_address)
        if error is None and self._fail_next > 0:
            self._fail_next -= 1
            error = "simulated rejection"
        if error is not None:
            self.rejected += 1
            logger.warning(f"[SIM] Rejected {signal.signal_type.value} {signal.token_address}: {error}")
            return ExecutionResult(success=False, error=error, error_code="simulated")

        notional = signal.price * signal.quantity
        fees = notional * Decimal(self.cfg.simulated_fee_bps) / _BPS
        if signal.signal_type == SignalType.ENTRY:
            self._balance -= notional + fees
        else:
            self._balance += notional - fees
        self.executed += 1
        sig = self._gen_signature()
        logger.info(f"[SIM] Fill {signal.signal_type.value} {signal.token_address} "
                    f"qty={signal.quantity} @ {signal.price} fees={fees:.6f}")
        return ExecutionResult(success=True, signature=sig, fees=fees)

    async def get_balance(self) -> Decimal:
        return self._balance


class HttpSwapVenue:
    """
    Live swap venue.

    - GET  /v1/balance/{wallet}  → {"balance": ...}
    - POST /v1/swap              → {"signature": ..., "fees": ..., "slippage": ...}
    """

    def __init__(self, cfg: VenueConfig, trading: TradingConfig):
        self.cfg = cfg
        self.trading = trading
        self.session: Optional[httpx.AsyncClient] = None

    async def connect(self) -> bool:
        if not self.cfg.wallet_address:
            raise FatalError("WALLET_ADDRESS is not configured", code="no_identity")
        self.session = httpx.AsyncClient(
            base_url=self.cfg.base_url, timeout=self.cfg.timeout_sec,
            headers={"Accept": "application/json", "Content-Type": "application/json"})
        try:
            resp = await self.session.get(f"/v1/balance/{self.cfg.wallet_address}")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            await self.session.aclose()
            self.session = None
            raise FatalError(f"venue identity check failed: {e}", code="venue_connect") from e
        logger.info(f"✓ Connected to swap venue as {self.cfg.wallet_address}")
        return True

    async def disconnect(self) -> None:
        if self.session:
            await self.session.aclose()
            self.session = None
            logger.info("Disconnected from swap venue")

    async def get_balance(self) -> Decimal:
        if self.session is None:
            raise FatalError("venue not connected", code="not_connected")
        try:
            resp = await self.session.get(f"/v1/balance/{self.cfg.wallet_address}")
            resp.raise_for_status()
            return Decimal(str(resp.json().get("balance", "0")))
        except httpx.HTTPError as e:
            raise TransientError(f"balance request failed: {e}", code="venue_balance") from e
        except (ValueError, InvalidOperation) as e:
            raise TransientError(f"unreadable balance: {e}", code="bad_payload") from e

    async def execute(self, signal: TradingSignal) -> ExecutionResult:
        if self.session is None:
            return ExecutionResult(success=False, error="venue not connected",
                                   error_code="not_connected")
        payload = {
            "wallet": self.cfg.wallet_address,
            "side": "buy" if signal.signal_type == SignalType.ENTRY else "sell",
            "token": signal.token_address,
            "amount": str(signal.quantity),
            "price": str(signal.price),
            "slippageBps": signal.slippage_bps or self.trading.slippage_bps,
        }
        try:
            resp = await self.session.post("/v1/swap", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Swap request failed for {signal.token_address}: {e}")
            return ExecutionResult(success=False, error=str(e), error_code="network")
        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {}
        if resp.status_code >= 400 or not body.get("signature"):
            error = body.get("error") or f"HTTP {resp.status_code}"
            return ExecutionResult(success=False, error=error,
                                   error_code=str(body.get("code", resp.status_code)))
        try:
            fees = Decimal(str(body.get("fees", "0")))
            slippage = Decimal(str(body.get("slippage", "0")))
        except InvalidOperation:
            fees, slippage = Decimal("0"), Decimal("0")
        return ExecutionResult(success=True, signature=body["signature"],
                               fees=fees, slippage=slippage)
