"""
Pillar notification & recurrence scheduling engine.

Subpackages:
- tasks: task model, SQLite task store, recurrence, completion hook
- notifications: preferences, quiet hours, generator, stores, periodic sweep
- core: ports, clock, events, shared SQLite base, app state
- cli: composition root and entrypoint
"""

__version__ = "0.1.0"
