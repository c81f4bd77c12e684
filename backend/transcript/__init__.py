"""
Transcript reconciliation and utterance materialization.

Design intent:
- Combine a text-fidelity pass with a speaker-separation pass.
- Keep every merge decision traceable through reason counts.
"""
