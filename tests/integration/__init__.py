"""
nexus-directive-intake — integration test package

File: tests/integration/__init__.py
Last updated: 2026-10-18

Purpose
- Package marker for tests that exercise the CLI and a real SQLite state DB.

Functional requirements
- Must not import heavy modules at import time; keep test collection fast.
"""
