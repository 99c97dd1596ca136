"""
stageboard: five-stage personal task tracker.

Offline-first: the local collection is always the presentation source of
truth; an optional remote document store is mirrored best-effort and
reconciled wholesale from live snapshots.
"""

__version__ = "0.1.0"
