from __future__ import annotations

"""
Prompt builders for the reasoning capability.

Design intent:
- Every prompt carries a ``### TASK:`` header and a single JSON ``### INPUT``
  block so replies can be traced back to the request.
- The output contract is spelled out in the prompt and enforced again on
  the reply by the caller.
"""

import json
from typing import Any, Mapping


def _render(task: str, instructions: str, payload: Mapping[str, Any], output_contract: str) -> str:
    return (
        f"### TASK: {task}\n"
        f"{instructions.strip()}\n"
        "### INPUT\n"
        f"{json.dumps(payload, ensure_ascii=False, sort_keys=True)}\n"
        "### OUTPUT\n"
        f"{output_contract.strip()}\n"
        "Return only the JSON object. No markdown, no commentary.\n"
    )


def speaker_identification_prompt(speakers: Mapping[str, Any]) -> str:
    return _render(
        "speaker_identification",
        """
You are reviewing a recorded play session between a caregiver and a young child.
For each speaker label decide whether the speaker is the ADULT caregiver or the CHILD.
Use vocabulary, sentence length, and conversational role. Every label listed must appear in the reply.
""",
        {"speakers": dict(speakers)},
        """
{"speaker_identification": {"<label>": {"role": "ADULT" | "CHILD", "confidence": <0.0-1.0>, "rationale": "<short>"}}}
""",
    )


def behavior_coding_prompt(utterances: list[dict[str, Any]], codes: list[str], mode: str) -> str:
    return _render(
        "behavior_coding",
        f"""
Code every caregiver utterance with exactly one behavior code from this closed set:
{", ".join(codes)}.
Session mode: {mode}. Child utterances are provided for context only and must not be coded.
Add one sentence of feedback for the caregiver per coded utterance.
""",
        {"utterances": utterances},
        """
{"codes": [{"id": <int id of a caregiver utterance>, "code": "<one code>", "feedback": "<one sentence>"}]}
Each caregiver id must appear exactly once.
""",
    )


def developmental_profile_prompt(context: Mapping[str, Any]) -> str:
    return _render(
        "developmental_profile",
        """
Write a developmental observation for the child from this play session.
Cover exactly these five domains: language, cognitive, social, emotional, connection.
Ground each observation in specific utterance ids from the transcript.
""",
        context,
        """
{"summary": "<2-3 sentences>",
 "domains": [{"domain": "language" | "cognitive" | "social" | "emotional" | "connection",
              "current_level": "<short>", "age_benchmark": "<short>",
              "observations": [{"text": "<observation>", "evidence_utterance_ids": [<int>]}]}],
 "session_metadata": {}}
""",
    )


def coaching_guidance_prompt(context: Mapping[str, Any]) -> str:
    return _render(
        "coaching_guidance",
        """
Write coaching guidance for the caregiver based on the coded session.
Pick the few patterns that matter most and show a concrete alternative for each.
""",
        context,
        """
{"summary": "<2-3 sentences>",
 "items": [{"observed_pattern": "<what happened>", "suggested_alternative": "<what to try>",
            "worked_example": "<example phrase>"}],
 "tomorrow_goal": "<one goal>"}
""",
    )


def milestone_detection_prompt(context: Mapping[str, Any], *, include_baseline: bool) -> str:
    baseline_rule = (
        "This is the child's first profiled session: also list in baseline_achieved the keys the child "
        "has clearly already mastered for their age."
        if include_baseline
        else "Return an empty baseline_achieved list."
    )
    return _render(
        "milestone_detection",
        f"""
Given the developmental profile and the milestone library keys, list the milestones for which this
session contains direct evidence. Use only keys from library_keys.
{baseline_rule}
""",
        context,
        """
{"detected_milestones": [{"milestone_key": "<key>", "evidence_summary": "<short>"}],
 "baseline_achieved": [{"milestone_key": "<key>", "evidence_summary": "<short>"}]}
""",
    )
