import pytest

from breathos.protocols import (
    PROTOCOLS,
    BreathProtocol,
    Phase,
    get_protocol,
    next_active_phase,
    protocol_ids,
)


def test_builtin_table_is_complete() -> None:
    assert set(PROTOCOLS) == {
        "4-7-8",
        "calm",
        "7-11",
        "deep-relax",
        "box",
        "coherence",
        "triangle",
        "tactical",
        "awake",
        "buteyko",
        "wim-hof",
    }
    relax = get_protocol("4-7-8")
    assert relax is not None
    assert (relax.inhale, relax.hold_in, relax.exhale, relax.hold_out) == (4.0, 7.0, 8.0, 0.0)
    assert relax.cycle_seconds == pytest.approx(19.0)
    assert relax.arousal_impact == pytest.approx(-0.8)
    assert relax.duration(Phase.HOLD_IN) == pytest.approx(7.0)


def test_unknown_protocol_is_none() -> None:
    assert get_protocol("does-not-exist") is None


def test_protocol_ids_filter_by_tag() -> None:
    assert list(protocol_ids("calm")) == ["4-7-8", "calm", "7-11", "deep-relax"]
    assert list(protocol_ids("energy")) == ["awake"]
    assert len(list(protocol_ids())) == len(PROTOCOLS)


def test_next_active_phase_skips_zero_durations() -> None:
    calm = PROTOCOLS["calm"]
    assert next_active_phase(calm, Phase.INHALE) is Phase.EXHALE
    assert next_active_phase(calm, Phase.EXHALE) is Phase.INHALE
    buteyko = PROTOCOLS["buteyko"]
    assert next_active_phase(buteyko, Phase.EXHALE) is Phase.HOLD_OUT
    assert next_active_phase(buteyko, Phase.HOLD_OUT) is Phase.INHALE


@pytest.mark.parametrize(
    "timings, impact",
    [
        ((0.0, 0.0, 0.0, 0.0), 0.0),
        ((4.0, -1.0, 4.0, 0.0), 0.0),
        ((4.0, 0.0, 4.0, 0.0), 1.5),
    ],
)
def test_invalid_protocols_are_refused(timings, impact) -> None:
    inhale, hold_in, exhale, hold_out = timings
    with pytest.raises(ValueError):
        BreathProtocol(
            id="bad",
            label="Bad",
            tag="test",
            description="",
            inhale=inhale,
            hold_in=hold_in,
            exhale=exhale,
            hold_out=hold_out,
            recommended_cycles=1,
            arousal_impact=impact,
        )


def test_to_dict_carries_timings() -> None:
    payload = PROTOCOLS["box"].to_dict()
    assert payload["id"] == "box"
    assert payload["hold_out"] == 4.0
    assert payload["recommended_cycles"] == 10
