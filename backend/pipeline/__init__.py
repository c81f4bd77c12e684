"""
Per-session pipeline orchestration.

Design intent:
- Own the session status machine and the retry budget in one place.
- Run mandatory stages sequentially and enrichment stages best-effort.
"""
