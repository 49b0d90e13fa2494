"""
itemflow — persistence layer

File: src/itemflow/persistence/__init__.py

Purpose
- Store protocols, the reference in-memory and SQLite stores, and the gateway
  that is the pipeline's only path to them.

Functional requirements
- Conditional writes (insert-if-absent, update-if-version) are atomic per item.
"""
