"""
Child milestone library and progression engine.

Design intent:
- Milestone status only moves forward: EMERGING to ACHIEVED, never back.
- Evidence updates for one child are applied atomically per milestone.
"""
