"""
Core subsystem.

Components:
- stages.py: the five fixed stages, seed and template texts
- models.py: Task, Snapshot, TaskPatch (KEEP / CLEAR field updates)
- normalize.py: pure normalizers + persisted record conversion
- engine.py: reconciliation engine (local mutations, remote mirroring, snapshots)
- migration.py: one-time copy of local data to the remote store
- ports.py: protocols for the remote adapter and the local key-value store
"""
