"""
Developmental profile and caregiver coaching generation.

Design intent:
- Enrichment only: failures are logged and never fail the session.
- Persist whatever part of the enrichment succeeded.
"""
