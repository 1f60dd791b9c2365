from tablekeeper.backend.state import build_envelope, build_initial_encounter


def test_build_initial_encounter_starts_at_round_one() -> None:
    state = build_initial_encounter()

    assert state == {"round": 1, "turnIndex": 0, "combatants": []}


def test_build_envelope_stamps_utc_time_when_missing() -> None:
    envelope = build_envelope(room="default", data={"npcs": []}, version=3)

    assert envelope["room"] == "default"
    assert envelope["version"] == 3
    assert envelope["data"] == {"npcs": []}
    assert envelope["lastUpdatedAt"].endswith("+00:00")


def test_build_envelope_keeps_given_timestamp() -> None:
    envelope = build_envelope(room="r", data=None, version=1, updated_at="2024-01-01T00:00:00+00:00")

    assert envelope["lastUpdatedAt"] == "2024-01-01T00:00:00+00:00"
