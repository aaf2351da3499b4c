import pytest
from pydantic import ValidationError

from core.models import AttributionPayload, DisplayPhase, PhaseChanged, PhaseKind


def test_display_phase_equality_includes_url():
    assert DisplayPhase.web_display("https://a") == DisplayPhase.web_display("https://a")
    assert DisplayPhase.web_display("https://a") != DisplayPhase.web_display("https://b")
    assert DisplayPhase.offline() != DisplayPhase.fallback()
    assert str(DisplayPhase.web_display("https://a")) == "web_display(https://a)"
    assert str(DisplayPhase.initializing()) == "initializing"


def test_display_phase_is_immutable():
    phase = DisplayPhase.fallback()
    with pytest.raises(ValidationError):
        phase.kind = PhaseKind.OFFLINE


def test_attribution_from_raw_keeps_unknown_keys():
    payload = AttributionPayload.from_raw({
        "af_status": "Non-organic",
        "is_first_launch": "true",
        "media_source": "fb",
        "adset": "spring",
        7: "numeric key",
    })
    assert payload.af_status == "Non-organic"
    assert payload.is_first_launch is True
    assert payload.extras == {"adset": "spring", "7": "numeric key"}
    assert not payload.is_organic

    data = payload.to_dict()
    assert data["media_source"] == "fb"
    assert data["adset"] == "spring"
    assert "campaign" not in data


@pytest.mark.parametrize("status", ["Organic", "organic", " ORGANIC "])
def test_organic_detection_ignores_case(status):
    assert AttributionPayload.from_raw({"af_status": status}).is_organic


def test_attribution_from_raw_tolerates_garbage():
    payload = AttributionPayload.from_raw({"is_first_launch": "maybe", "af_status": None})
    assert payload.is_first_launch is None
    assert payload.af_status is None
    assert AttributionPayload.from_raw(None) == AttributionPayload()


def test_merged_overlays_later_values():
    base = AttributionPayload.from_raw({"af_status": "Organic", "keep": 1})
    late = AttributionPayload.from_raw({"af_status": "Non-organic", "campaign": "c1"})
    merged = base.merged(late)
    assert merged.af_status == "Non-organic"
    assert merged.campaign == "c1"
    assert merged.extras == {"keep": 1}


def test_event_serializes_to_json():
    event = PhaseChanged(previous=DisplayPhase.initializing(), current=DisplayPhase.web_display("https://x"))
    assert event.name == "PhaseChanged"
    assert event.model_dump(mode="json")["current"] == {"kind": "web_display", "url": "https://x"}
