"""
nexus-directive-intake — persistence package

File: src/directive_intake/persistence/__init__.py
Last updated: 2026-10-18

Purpose
- Persistence layer: state DB access, migrations, repositories, and the storage
  contracts the lifecycle depends on.

What should be included in this file
- Nothing beyond this docstring; import the submodules directly.

Functional requirements
- Must support concurrent writers through short-lived connections.

Non-functional requirements
- SQLite-first; avoid heavy DB dependencies.
"""
