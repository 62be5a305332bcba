"""Longbox core package.

Modules:
- discovery: filesystem walk and series.json sidecars
- planner: scan reconciliation into a side-effect-free plan
- applier: commits a plan, cascades removals
- folders: materialized folder tree and aggregate counts
- matcher: series identity ladder and auto-linking
- pipeline: detached post-scan metadata + linking
- database / models: SQLite via SQLModel
- config: INI parsing and config object
"""

__version__ = "0.1.0"
