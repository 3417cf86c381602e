"""Terminal views over Framestate.

Modules
-------
renderer
    ``StateRenderer`` turns ``CurrentState``, ``Snapshot`` and
    ``ActivityPage`` models into Rich renderables, including a continuous
    ``Rich.Live`` mode that re-reads state on every refresh.
"""
