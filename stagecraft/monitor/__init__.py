"""Stagecraft monitor - pure read-only projection over the run ledger.

The monitor NEVER maintains its own state.  Every call re-reads from the
ledger.  It is a projection, not a source of truth.

Modules
-------
projection
    ``MonitorProjection`` reads the ledger and produces ``RunSnapshot``
    Pydantic models - a frozen, point-in-time view of a pipeline run.
renderer
    ``MonitorRenderer`` turns ``RunSnapshot`` into Rich renderables
    for terminal display, including continuous ``Rich.Live`` mode.
"""
