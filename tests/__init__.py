"""
Tests for Tier Governor

Organized by subsystem:
- test_tiers.py, test_modes.py: tier state machine and run modes
- test_signals.py, test_accounting.py, test_engine.py: per-unit pipeline
- test_runner.py: run lifecycle, cancellation, override, replay
- test_sources.py: token sources and unit splitting
- test_*.py: telemetry, events, config, dashboard, CLI
"""
