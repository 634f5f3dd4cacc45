"""
Bundle Keeper - keep several on-disk versions of a third-party code bundle.

Features:
- Official, custom and merged snapshot pools per managed unit
- Active version pointer with rollback along creation order
- Three-way file-set diff using xxhash
- Line-level three-way merge with conflict markers
- Conflict resolution with a persistent conflict log (SQLite-backed)
- Cached upstream version lookups
"""

__version__ = "1.0.0"
