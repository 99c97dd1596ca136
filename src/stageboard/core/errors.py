# src/stageboard/core/errors.py

"""
Error taxonomy.

Local path:
- ValidationRejected: empty text on add/update; absorbed by the engine (no-op).

Remote path (all caught at the engine boundary and turned into `sync_error`):
- NotConfigured: no remote collaborator at all -> local-only session.
- NotSignedIn: no identity -> sync disabled, local mutations unaffected.
- WriteError / ListenError: a remote write or subscription failed.
"""

from __future__ import annotations


class StageboardError(Exception):
    """Base class for all errors raised by stageboard."""


class ValidationRejected(StageboardError):
    pass


class SyncError(StageboardError):
    """Base class for remote-path failures."""


class NotConfigured(SyncError):
    pass


class NotSignedIn(SyncError):
    pass


class WriteError(SyncError):
    pass


class ListenError(SyncError):
    pass
