"""
Execution layer — position lifecycle, risk decisions, and venue settlement.

SRP split:
  risk_evaluator.py         — pure exit / stop / target decisions
  position_store.py         — active-position index, write-through persistence
  execution_coordinator.py  — open/close via the venue, exit channel consumer
  position_monitor.py       — periodic evaluation rounds
  trading_engine.py         — startup, shutdown, opportunity intake
  venues.py                 — dry-run and HTTP swap venues
"""
