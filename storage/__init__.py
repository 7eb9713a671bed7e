"""
Durable stores for positions, trades and token snapshots.

  redis_store.py   — production backend (redis.asyncio)
  memory_store.py  — dry-run / test backend with the same contract
"""
