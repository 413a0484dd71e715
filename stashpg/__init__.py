"""
stashpg

A one-shot migration tool that copies a media catalog database (files,
galleries, images, performers, scenes, studios, tags, groups and their
join tables) from its embedded SQLite file into a PostgreSQL schema.

Supports:
- Paged extraction from a read-only SQLite source
- Per-table row repairs for PostgreSQL's stricter types
- Multi-row inserts, one destination transaction per batch
- Sequence resynchronization after the load
- Dry runs that read and repair without writing
"""

__version__ = "0.1.0"
