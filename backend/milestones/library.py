from __future__ import annotations

"""
Milestone reference library.

The built-in table covers language (Brown's stages), cognitive, social,
emotional and connection milestones with their evidence thresholds and
typical ages. ``PLAYCOACH_MILESTONE_LIBRARY_PATH`` may point at a JSON list
of the same records to replace it.
"""

import json
from pathlib import Path
from typing import Iterable, Optional

from backend.internal_core.contracts import MilestoneDefinition

# key, category, grouping stage, title, threshold, median age, mastery age (90%), action tip
_SEED: tuple[tuple[str, str, str, str, int, int, int, str], ...] = (
    ("language_brown_stage1_semantic", "Language", "Stage I (12-26m)", "Semantic Roles (Agent+Action)", 3, 12, 26,
     'Use "Expansions". If your child says "Doggy," you say "Big doggy!" or "Doggy bark!" to add context.'),
    ("language_brown_stage1_negation", "Language", "Stage I (12-26m)", "Early Negation ('No' + X)", 3, 12, 26,
     'Model the full thought instead of correcting. If they say "No juice," reply: "Oh, you have no more juice."'),
    ("language_brown_stage2_ing", "Language", "Stage II (27-30m)", "Present Progressive (-ing)", 3, 27, 30,
     'Sportscast their play. Narrate what is happening right now: "The car is going up! It is spinning!"'),
    ("language_brown_stage2_plurals", "Language", "Stage II (27-30m)", "Regular Plurals (-s)", 3, 27, 30,
     'Emphasize the "S" sound at the end of words during snack time: "Do you want crackerS or grapeS?"'),
    ("language_brown_stage2_prepositions", "Language", "Stage II (27-30m)", "Prepositions (In/On)", 3, 27, 30,
     'Play hide and seek with a toy. Ask: "Is the bear IN the box? No, he is ON the chair!"'),
    ("language_brown_stage3_past_irregular", "Language", "Stage III (31-34m)", "Irregular Past Tense (Fell/Ran)", 2, 31, 34,
     'Use "Recasting". If they say "I falled," simply reply "Yes, you fell down" without saying they were wrong.'),
    ("language_brown_stage3_possessive", "Language", "Stage III (31-34m)", "Possessives ('s)", 2, 31, 34,
     "Point out ownership during cleanup. \"This is Mommy's shoe. That is Baby's ball.\""),
    ("language_brown_stage4_articles", "Language", "Stage IV (35-40m)", "Articles (A/The)", 3, 35, 40,
     "Use \"Time Travel\" talk. Discuss yesterday's specific events: \"We went to THE park and saw A dog.\""),
    ("language_brown_stage4_past_regular", "Language", "Stage IV (35-40m)", "Regular Past Tense (-ed)", 3, 35, 40,
     'Narrate completed actions at the end of the day. "We walk-ed to the car. We wash-ed our hands."'),
    ("language_brown_stage5_3rd_person", "Language", "Stage V (41-46m)", "3rd Person Irregular (Does/Has)", 2, 41, 46,
     'Highlight habits and routines. "Daddy likes coffee. The sun shines bright."'),
    ("language_post_stage5_passive", "Language", "Post-Stage V (47m+)", "Passive Voice Construction", 1, 47, 84,
     'Read books and flip the subject. "Look! The ball was thrown by the boy."'),
    ("cognitive_preop_naming", "Cognitive", "Pre-Operational (24-36m)", "Immediate Naming (Here & Now)", 3, 24, 36,
     'Play "I Spy". Ask "What is that?" regarding immediate objects in the room to build naming speed.'),
    ("cognitive_temporal_sequencing", "Cognitive", "Temporal Logic (36-48m)", "Sequencing (First/Then)", 1, 36, 48,
     'Use "First/Then" language for routines. "First we put on socks, then we put on shoes."'),
    ("cognitive_temporal_decentering", "Cognitive", "Temporal Logic (36-48m)", "Decentering (Talking about Past)", 2, 36, 48,
     'Ask recall questions at dinner. "What was the very first thing we did at the park today?"'),
    ("cognitive_causal_reasoning", "Cognitive", "Causal Logic (48-84m)", "Causal Linking (Because/So)", 2, 48, 84,
     'Play "Consequence Prediction". While reading, ask: "What will happen next BECAUSE it is raining?"'),
    ("cognitive_tom_questions", "Cognitive", "Causal Logic (48-84m)", "Theory of Mind Questions", 1, 48, 84,
     "Read stories and ask about characters' thoughts. \"Why do you think he feels sad right now?\""),
    ("social_interaction_initiation", "Social", "Transition (24-36m)", "Initiation ('Let's')", 2, 24, 36,
     "Use \"Let's\" statements to model joint play. \"Let's build a tower together!\""),
    ("social_interaction_turntaking", "Social", "Transition (24-36m)", "Verbal Turn Taking ('My turn')", 2, 24, 36,
     'Use a physical object (like a ball) to pass back and forth saying "My turn... Your turn."'),
    ("social_pragmatic_politeness", "Social", "Pragmatic Dev (36-60m)", "Politeness Markers (Please/Thanks)", 2, 36, 60,
     'Role play with dolls. Have the doll say "Please" and "Thank you" to get a pretend snack.'),
    ("social_pragmatic_friendship", "Social", "Pragmatic Dev (36-60m)", "Explicit Friendship Definition", 1, 36, 60,
     'Explicitly label friendly acts. "You shared your toy! That is what a friend does."'),
    ("social_interpersonal_negotiation", "Social", "Interpersonal (60-84m)", "Complex Play Negotiation", 1, 60, 84,
     'Pose "Win-Win" challenges. "You want blocks, he wants cars. How can we play with both?"'),
    ("emotional_personal_boundaries", "Emotional", "Assertion (24-36m)", "Boundaries ('Mine'/'No')", 3, 24, 36,
     "Offer limited choices. \"You don't want the coat? Do you want the blue one or the red one?\""),
    ("emotional_personal_self_concept", "Emotional", "Identity (36-60m)", "Self-Concept ('I am...')", 2, 36, 60,
     'Use an affirmation mirror. Look in the mirror together and say "I am a fast runner!"'),
    ("emotional_regulation_justification", "Emotional", "Regulation (60-84m)", "Emotional Justification (Feel...Because)", 1, 60, 84,
     'Use "Name it to Tame it". "You feel sad BECAUSE the tower fell, right?"'),
    ("connection_ea_physical_pull", "Connection", "Involvement (24-48m)", "Physical 'Check-in' (Pulling/Showing)", 2, 24, 48,
     "The 30-Second Spotlight. When they physically pull you, stop everything and give full eye contact for 30s."),
    ("connection_ea_verbal_invite", "Connection", "Partnership (48-84m)", "Verbal Role Invitation", 1, 48, 84,
     "Accept the Invitation. If they assign you a role in play, accept it immediately and follow their script."),
)


class MilestoneLibrary:
    def __init__(self, definitions: Iterable[MilestoneDefinition]):
        self._by_key: dict[str, MilestoneDefinition] = {}
        for definition in definitions:
            if definition.key in self._by_key:
                raise ValueError(f"Duplicate milestone key: {definition.key}")
            self._by_key[definition.key] = definition

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)

    def get(self, key: str) -> Optional[MilestoneDefinition]:
        return self._by_key.get(key)

    def keys(self) -> list[str]:
        return list(self._by_key)

    def definitions(self) -> list[MilestoneDefinition]:
        return list(self._by_key.values())


def default_library() -> MilestoneLibrary:
    return MilestoneLibrary(
        MilestoneDefinition(
            key=key,
            category=category,
            grouping_stage=stage,
            display_title=title,
            threshold=threshold,
            median_age_months=median,
            mastery_age_months=mastery,
            action_tip=tip,
        )
        for key, category, stage, title, threshold, median, mastery, tip in _SEED
    )


def load_milestone_library(path: Optional[Path] = None) -> MilestoneLibrary:
    if path is None:
        return default_library()
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Milestone library file must hold a JSON list: {path}")
    return MilestoneLibrary(MilestoneDefinition.model_validate(item) for item in data)
