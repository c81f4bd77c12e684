import pytest

from backend.coding.roles import build_speaker_samples, classify_roles, run_role_classification
from backend.internal_core.providers.base import ProviderError
from backend.pipeline.errors import RoleClassificationError
from backend.transcript.merger import merge_passes
from backend.transcript.utterance_store import UtteranceStore

from conftest import CONVERSATION, ScriptedReasoning, make_pass, roles_by_prefix


def _materialized(store):
    session_id = store.create_session("user_1", "child_directed", "s3://bucket")
    utterances = UtteranceStore(store)
    utterances.materialize(
        session_id, merge_passes(make_pass("a", CONVERSATION), make_pass("b", CONVERSATION)), 12.0
    )
    return session_id, utterances


def test_build_speaker_samples_skips_silence_and_counts_utterances(store) -> None:
    session_id, utterances = _materialized(store)

    samples = build_speaker_samples(utterances.rows(session_id))

    assert set(samples) == {"adult_a", "child_b"}
    assert samples["adult_a"]["utterance_count"] == 2
    assert samples["adult_a"]["samples"][0] == "You are building a tower."


@pytest.mark.asyncio
async def test_run_role_classification_makes_one_call_and_broadcasts_roles(store, cfg) -> None:
    session_id, utterances = _materialized(store)
    reasoning = ScriptedReasoning({"speaker_identification": roles_by_prefix})

    identification = await run_role_classification(reasoning, utterances, session_id, cfg)

    assert reasoning.tasks() == ["speaker_identification"]
    assert reasoning.calls[0][0] == "classify"
    assert identification.role_map() == {"adult_a": "adult", "child_b": "child"}
    rows = [r for r in utterances.rows(session_id) if r.kind == "speech"]
    assert all(r.role == ("adult" if r.speaker == "adult_a" else "child") for r in rows)
    assert store.get_session(session_id).role_identification is not None


@pytest.mark.asyncio
async def test_classify_roles_fails_when_a_label_is_missing(store) -> None:
    session_id, utterances = _materialized(store)
    reasoning = ScriptedReasoning(
        {
            "speaker_identification": lambda payload: {
                "speaker_identification": {"adult_a": {"role": "ADULT", "confidence": 0.9}}
            }
        }
    )

    with pytest.raises(RoleClassificationError) as excinfo:
        await classify_roles(reasoning, utterances.rows(session_id))
    assert excinfo.value.code == "missing_label"


@pytest.mark.asyncio
async def test_classify_roles_fails_on_low_confidence(store) -> None:
    session_id, utterances = _materialized(store)

    def _unsure(payload):
        reply = roles_by_prefix(payload)
        reply["speaker_identification"]["child_b"]["confidence"] = 0.2
        return reply

    with pytest.raises(RoleClassificationError) as excinfo:
        await classify_roles(ScriptedReasoning({"speaker_identification": _unsure}), utterances.rows(session_id))
    assert excinfo.value.code == "ambiguous_label"


@pytest.mark.asyncio
async def test_classify_roles_fails_on_unknown_role_value(store) -> None:
    session_id, utterances = _materialized(store)

    def _other(payload):
        reply = roles_by_prefix(payload)
        reply["speaker_identification"]["child_b"]["role"] = "SIBLING"
        return reply

    with pytest.raises(RoleClassificationError) as excinfo:
        await classify_roles(ScriptedReasoning({"speaker_identification": _other}), utterances.rows(session_id))
    assert excinfo.value.code == "invalid_reply"


@pytest.mark.asyncio
async def test_classify_roles_requires_an_adult(store) -> None:
    session_id, utterances = _materialized(store)

    def _children_only(payload):
        return {
            "speaker_identification": {
                label: {"role": "CHILD", "confidence": 0.9} for label in payload["speakers"]
            }
        }

    with pytest.raises(RoleClassificationError) as excinfo:
        await classify_roles(ScriptedReasoning({"speaker_identification": _children_only}), utterances.rows(session_id))
    assert excinfo.value.code == "no_adult"


@pytest.mark.asyncio
async def test_classify_roles_wraps_provider_failure(store) -> None:
    session_id, utterances = _materialized(store)

    def _boom(payload):
        raise ProviderError("http_503", "busy", "scripted")

    with pytest.raises(RoleClassificationError) as excinfo:
        await classify_roles(ScriptedReasoning({"speaker_identification": _boom}), utterances.rows(session_id))
    assert excinfo.value.code == "http_503"
    assert excinfo.value.stage == "role_classification"
