"""
Asynchronous job execution for risk assessment intake.

This package provides:
- Postgres-backed job records with an attempt-counted state machine
- Registry-based pluggable handlers, one per job type
- Local or remote routing of newly created jobs
- Single-hop chaining from document parsing to gap detection
"""
