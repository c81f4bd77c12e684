"""
API boundary for the play-session pipeline.

Design intent:
- Expose thin, typed endpoints for session creation, status and reports.
- Keep request validation explicit and failure modes predictable.
"""
