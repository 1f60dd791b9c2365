"""Reducer and engine helpers for the combat tracker."""

from __future__ import annotations

from dataclasses import dataclass
import math
import re
from typing import Any
import uuid

from .errors import NotFoundError, ValidationError
from .state import build_initial_encounter

COMBATANT_KINDS = ("PC", "NPC", "Monster")
DEFAULT_KIND = "NPC"

_LEADING_INT = re.compile(r"\s*[+-]?\d+")


@dataclass(frozen=True)
class ActionResult:
    state: dict[str, Any]
    engine_events: list[dict[str, Any]]


def sort_combatants(combatants: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order by initiative descending, ties broken by name ascending."""
    return sorted(combatants, key=lambda combatant: (-int(combatant["initiative"]), combatant["name"]))


def clamp_turn(index: int, length: int) -> int:
    if length <= 0:
        return 0
    return min(max(index, 0), length - 1)


def active_combatant(state: dict[str, Any]) -> dict[str, Any] | None:
    ordered = sort_combatants(list(state.get("combatants", [])))
    if not ordered:
        return None
    return ordered[clamp_turn(int(state.get("turnIndex", 0)), len(ordered))]


def apply_combat_action(state: dict[str, Any], action: dict[str, Any]) -> ActionResult:
    """Apply one operator action to an encounter."""
    action_type = str(action.get("type", "")).upper()
    if action_type == "ADD_COMBATANT":
        return add_combatant(state=state, raw=_require_mapping(action, "combatant"))
    if action_type == "REMOVE_COMBATANT":
        return remove_combatant(state=state, combatant_id=_require_id(action))
    if action_type == "UPDATE_COMBATANT":
        return update_combatant(state=state, combatant_id=_require_id(action), patch=_require_mapping(action, "patch"))
    if action_type == "NEXT_TURN":
        return advance_turn(state)
    if action_type == "PREV_TURN":
        return retreat_turn(state)
    if action_type == "NEW_ROUND":
        return start_new_round(state)
    if action_type == "FOCUS":
        return focus_combatant(state=state, combatant_id=_require_id(action))
    if action_type == "RESET":
        return reset_encounter()
    raise ValidationError(f"Unsupported combat action {action_type or '<empty>'}", reason="unsupported_action")


def advance_turn(state: dict[str, Any]) -> ActionResult:
    ordered = sort_combatants(list(state.get("combatants", [])))
    if not ordered:
        return ActionResult(state=dict(state), engine_events=[])

    turn_index = clamp_turn(int(state.get("turnIndex", 0)), len(ordered))
    events: list[dict[str, Any]] = [{"kind": "timing", "timing": "turn_end", "actorId": ordered[turn_index]["id"]}]

    next_state = dict(state)
    new_turn_index = turn_index + 1
    if new_turn_index >= len(ordered):
        new_turn_index = 0
        next_state["round"] = int(state.get("round", 1)) + 1
        events.append({"kind": "timing", "timing": "round_end"})
        events.append({"kind": "timing", "timing": "round_start", "round": next_state["round"]})

    next_state["turnIndex"] = new_turn_index
    events.append({"kind": "timing", "timing": "turn_start", "actorId": ordered[new_turn_index]["id"]})
    return ActionResult(state=next_state, engine_events=events)


def retreat_turn(state: dict[str, Any]) -> ActionResult:
    ordered = sort_combatants(list(state.get("combatants", [])))
    if not ordered:
        return ActionResult(state=dict(state), engine_events=[])

    next_state = dict(state)
    new_turn_index = clamp_turn(int(state.get("turnIndex", 0)), len(ordered)) - 1
    if new_turn_index < 0:
        new_turn_index = len(ordered) - 1
        next_state["round"] = max(1, int(state.get("round", 1)) - 1)

    next_state["turnIndex"] = new_turn_index
    return ActionResult(
        state=next_state,
        engine_events=[{"kind": "timing", "timing": "turn_rewound", "actorId": ordered[new_turn_index]["id"]}],
    )


def start_new_round(state: dict[str, Any]) -> ActionResult:
    ordered = sort_combatants(list(state.get("combatants", [])))
    if not ordered:
        return ActionResult(state=dict(state), engine_events=[])

    next_state = dict(state)
    next_state["round"] = int(state.get("round", 1)) + 1
    next_state["turnIndex"] = 0
    return ActionResult(
        state=next_state,
        engine_events=[
            {"kind": "timing", "timing": "round_end"},
            {"kind": "timing", "timing": "round_start", "round": next_state["round"]},
            {"kind": "timing", "timing": "turn_start", "actorId": ordered[0]["id"]},
        ],
    )


def reset_encounter() -> ActionResult:
    """Clear the encounter back to round 1 with nobody in it."""
    return ActionResult(state=build_initial_encounter(), engine_events=[{"kind": "encounter_reset"}])


def focus_combatant(state: dict[str, Any], combatant_id: str) -> ActionResult:
    ordered = sort_combatants(list(state.get("combatants", [])))
    positions = [index for index, combatant in enumerate(ordered) if combatant["id"] == combatant_id]
    if not positions:
        return ActionResult(state=dict(state), engine_events=[])

    next_state = dict(state)
    next_state["turnIndex"] = positions[0]
    return ActionResult(
        state=next_state,
        engine_events=[{"kind": "timing", "timing": "turn_start", "actorId": combatant_id}],
    )


def add_combatant(state: dict[str, Any], raw: dict[str, Any]) -> ActionResult:
    combatant = normalize_combatant(raw)
    combatants = list(state.get("combatants", []))
    if any(existing["id"] == combatant["id"] for existing in combatants):
        raise ValidationError(f"Combatant {combatant['id']} already exists", reason="duplicate_combatant")

    active = active_combatant(state)
    combatants.append(combatant)
    next_state = _reorder(state, combatants, preserve_id=active["id"] if active else None)
    return ActionResult(state=next_state, engine_events=[{"kind": "combatant_added", "combatant": combatant}])


def remove_combatant(state: dict[str, Any], combatant_id: str) -> ActionResult:
    combatants = list(state.get("combatants", []))
    remaining = [combatant for combatant in combatants if combatant["id"] != combatant_id]
    if len(remaining) == len(combatants):
        raise NotFoundError(f"Combatant {combatant_id} not found", reason="combatant_not_found")

    active = active_combatant(state)
    preserve_id = None if active is None or active["id"] == combatant_id else active["id"]
    next_state = _reorder(state, remaining, preserve_id=preserve_id)
    return ActionResult(state=next_state, engine_events=[{"kind": "combatant_removed", "combatantId": combatant_id}])


def update_combatant(state: dict[str, Any], combatant_id: str, patch: dict[str, Any]) -> ActionResult:
    combatants = list(state.get("combatants", []))
    for index, existing in enumerate(combatants):
        if existing["id"] == combatant_id:
            break
    else:
        raise NotFoundError(f"Combatant {combatant_id} not found", reason="combatant_not_found")

    merged = {**existing, **patch, "id": combatant_id}
    combatants[index] = normalize_combatant(merged)

    active = active_combatant(state)
    next_state = _reorder(state, combatants, preserve_id=active["id"] if active else None)
    return ActionResult(
        state=next_state,
        engine_events=[{"kind": "combatant_updated", "combatant": combatants[index]}],
    )


def normalize_combatant(raw: dict[str, Any]) -> dict[str, Any]:
    """Coerce loosely typed input into a combatant record.

    Initiative falls back to 0 when unparsable; AC and hit points are optional;
    conditions may be a list or a comma separated string.
    """
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ValidationError("Combatant name is required", reason="missing_name")

    combatant_id = raw.get("id")
    if not isinstance(combatant_id, str) or not combatant_id.strip():
        combatant_id = str(uuid.uuid4())

    kind = raw.get("kind")
    if kind not in COMBATANT_KINDS:
        kind = DEFAULT_KIND

    return {
        "id": combatant_id.strip(),
        "name": name,
        "kind": kind,
        "initiative": _to_int(raw.get("initiative"), fallback=0),
        "ac": _to_optional_int(raw.get("ac")),
        "hp": _to_optional_int(raw.get("hp")),
        "maxHp": _to_optional_int(raw.get("maxHp")),
        "conditions": _to_conditions(raw.get("conditions")),
        "notes": str(raw.get("notes") or "").strip(),
    }


def normalize_encounter(raw: Any) -> dict[str, Any]:
    """Sanitize a whole encounter, e.g. one imported from a browser's local storage."""
    if not isinstance(raw, dict) or not isinstance(raw.get("combatants"), list):
        raise ValidationError("Encounter requires a combatants list", reason="invalid_encounter")

    combatants: list[dict[str, Any]] = []
    for entry in raw["combatants"]:
        if not isinstance(entry, dict):
            continue
        candidate = dict(entry)
        if not str(candidate.get("name") or "").strip():
            candidate["name"] = "Unnamed"
        combatants.append(normalize_combatant(candidate))

    ordered = sort_combatants(combatants)
    return {
        "round": max(1, _to_int(raw.get("round"), fallback=1)),
        "turnIndex": clamp_turn(_to_int(raw.get("turnIndex"), fallback=0), len(ordered)),
        "combatants": ordered,
    }


def _reorder(state: dict[str, Any], combatants: list[dict[str, Any]], preserve_id: str | None) -> dict[str, Any]:
    ordered = sort_combatants(combatants)
    if not ordered:
        turn_index = 0
    elif preserve_id is not None:
        positions = [index for index, combatant in enumerate(ordered) if combatant["id"] == preserve_id]
        turn_index = positions[0] if positions else 0
    else:
        turn_index = clamp_turn(int(state.get("turnIndex", 0)), len(ordered))

    next_state = dict(state)
    next_state["combatants"] = ordered
    next_state["turnIndex"] = turn_index
    return next_state


def _require_id(action: dict[str, Any]) -> str:
    combatant_id = action.get("combatantId")
    if not isinstance(combatant_id, str) or combatant_id.strip() == "":
        raise ValidationError("combatantId is required", reason="missing_combatant_id")
    return combatant_id.strip()


def _require_mapping(action: dict[str, Any], field: str) -> dict[str, Any]:
    value = action.get(field)
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object", reason=f"missing_{field}")
    return value


def _to_int(value: Any, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else fallback
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group(0)) if match else fallback
    return fallback


def _to_optional_int(value: Any) -> int | None:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    return _to_int(value, fallback=0)


def _to_conditions(value: Any) -> list[str]:
    if isinstance(value, str):
        candidates = value.split(",")
    elif isinstance(value, (list, tuple)):
        candidates = [item for item in value if isinstance(item, str)]
    else:
        candidates = []

    conditions: list[str] = []
    for candidate in candidates:
        tag = candidate.strip()
        if tag and tag not in conditions:
            conditions.append(tag)
    return conditions
