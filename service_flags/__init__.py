"""
Flag evaluation service for Switchboard.

- app.engine: Deterministic flag evaluation (bucketing, rules, defaults).
- app.store: In-memory flag lookup handing snapshots to the engine.
- app.recording: Fire-and-forget recording of evaluations.
- app.main: HTTP surface for SDKs and the management API.
- sdk: Python client for the HTTP surface.
"""
