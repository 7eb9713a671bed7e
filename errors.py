"""
Engine error taxonomy.

Four variants, each carrying structured fields rather than free-form payloads:
  TransientError    — price feed / store / venue unreachable; retried next round
  ValidationError   — malformed signal or inconsistent position levels
  ExecutionFailure  — venue rejected the trade or settlement failed
  FatalError        — start/stop could not complete; surfaced to the caller
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(eq=False)
class EngineError(Exception):
    message: str
    token_address: Optional[str] = None
    code: Optional[str] = None

    def __str__(self) -> str:
        code_str = f" [{self.code}]" if self.code else ""
        token_str = f" ({self.token_address})" if self.token_address else ""
        return f"{type(self).__name__}{code_str}: {self.message}{token_str}"


@dataclass(eq=False)
class TransientError(EngineError):
    pass


@dataclass(eq=False)
class PriceUnavailable(TransientError):
    pass


@dataclass(eq=False)
class PriceNotFound(TransientError):
    pass


@dataclass(eq=False)
class StoreUnavailable(TransientError):
    pass


@dataclass(eq=False)
class ValidationError(EngineError):
    field_name: Optional[str] = None


@dataclass(eq=False)
class ExecutionFailure(EngineError):
    signature: Optional[str] = None


@dataclass(eq=False)
class FatalError(EngineError):
    pass
