"""
Speaker role classification and caregiver behavior coding.

Design intent:
- One reasoning call per stage per session, validated before anything is stored.
- Aggregates are derived from stored tags so they can always be recomputed.
"""
