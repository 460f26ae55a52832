"""
Flag evaluation service application.

Answers "for flag K in environment E and context C, which value applies
now?" over HTTP, for SDKs (bulk and single-flag evaluation) and for the
management API.

Guidelines:
- Evaluation is pure over immutable snapshots; keep I/O out of the engine.
- Recording never blocks or fails an evaluation.
- Failures of one flag never break bulk evaluation of the others.
"""
