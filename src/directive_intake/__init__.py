"""
nexus-directive-intake — package root

File: src/directive_intake/__init__.py
Last updated: 2026-10-18

Purpose
- Intake pipeline for planner-generated directives: schema validation, canonical
  fingerprints, and the approve/apply lifecycle that materializes backlog tasks.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
