"""
Monitoring — lifecycle events, metrics, performance reporting.

  event_bus.py            — explicitly constructed pub/sub for lifecycle events
  metrics_exporter.py     — Prometheus counters/gauges fed by events and rounds
  performance_tracker.py  — realized performance from the trade history
"""
