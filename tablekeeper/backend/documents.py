"""Schemas for the shared room documents: map unlocks, NPCs, shops, pantheon."""

from __future__ import annotations

from typing import Any
import uuid

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .engine import normalize_encounter
from .errors import ValidationError
from .rooms import DocumentSchema
from .state import build_initial_encounter, utc_now_iso

TOWNS: tuple[tuple[str, str], ...] = (
    ("stonecross", "Stonecross"),
    ("stormwatch", "Stormwatch"),
    ("westhaven", "Westhaven"),
    ("eldergate", "Eldergate"),
    ("sunspire", "Sunspire"),
    ("ashenmoor", "Ashen Moor"),
    ("shatteredisles", "Shattered Isles"),
    ("greenshadow", "Greenshadow Forest"),
)
TOWN_IDS = tuple(town_id for town_id, _ in TOWNS)
DEFAULT_UNLOCKED = ("stonecross", "stormwatch", "westhaven")

SHOP_CITIES = (
    "Stonecross",
    "Stormwatch",
    "Westhaven",
    "Eldergate",
    "Shattered Isles",
    "Sunspire",
    "Ashen Moor",
    "Greenshadow Forest",
)


def new_id() -> str:
    return str(uuid.uuid4())


def _require_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", reason="invalid_body")
    return payload


def _validation_reason(exc: PydanticValidationError, prefix: str) -> ValidationError:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return ValidationError(f"{location}: {first.get('msg', 'invalid value')}", reason=f"invalid_{prefix}")


class MapUnlockSchema(DocumentSchema):
    namespace = "map-unlocks"

    def seed(self) -> dict[str, Any]:
        return {"unlocked": list(DEFAULT_UNLOCKED)}

    def normalize(self, payload: Any, current: Any) -> dict[str, Any]:
        unlocked = _require_object(payload).get("unlocked")
        if not isinstance(unlocked, list):
            raise ValidationError("unlocked must be a list of town ids", reason="missing_unlocked")
        unknown = [town_id for town_id in unlocked if town_id not in TOWN_IDS]
        if unknown:
            raise ValidationError("Unknown town id", reason="unknown_town", details={"townIds": unknown})
        return {"unlocked": [town_id for town_id in TOWN_IDS if town_id in unlocked]}


class NpcDirectorySchema(DocumentSchema):
    """NPC directory.

    Accepts a full replacement (``{"npcs": [...]}``, invalid entries dropped)
    or a single operation (``{"op": "upsert", "npc": {...}}`` or
    ``{"op": "delete", "id": "..."}``).
    """

    namespace = "npcs"

    def seed(self) -> dict[str, Any]:
        return {"npcs": []}

    def normalize(self, payload: Any, current: Any) -> dict[str, Any]:
        body = _require_object(payload)
        existing: list[dict[str, Any]] = list((current or {}).get("npcs", []))

        if isinstance(body.get("npcs"), list):
            npcs = [npc for npc in (normalize_npc(raw) for raw in body["npcs"]) if npc is not None]
            return {"npcs": _sorted_npcs(npcs)}

        op = str(body.get("op") or "").lower()
        if op == "upsert":
            raw_npc = body.get("npc") if isinstance(body.get("npc"), dict) else {}
            raw_id = str(raw_npc.get("id") or "")
            match = next((npc for npc in existing if npc["id"] == raw_id), None)
            npc = normalize_npc(raw_npc, match)
            if npc is None:
                raise ValidationError("Upsert requires npc name, title and a valid townId", reason="invalid_npc")
            npcs = [npc if entry["id"] == npc["id"] else entry for entry in existing]
            if match is None:
                npcs.append(npc)
            return {"npcs": _sorted_npcs(npcs)}

        if op == "delete":
            npc_id = str(body.get("id") or "").strip()
            if not npc_id:
                raise ValidationError("Delete requires an id", reason="missing_id")
            return {"npcs": [npc for npc in existing if npc["id"] != npc_id]}

        raise ValidationError(
            'Use {"npcs": [...]}, {"op": "upsert", "npc": {...}} or {"op": "delete", "id": "..."}',
            reason="unsupported_operation",
        )


def normalize_npc(raw: Any, existing: dict[str, Any] | None = None) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    name = str(raw.get("name") or "").strip()
    title = str(raw.get("title") or "").strip()
    town_id = raw.get("townId")
    if not name or not title or town_id not in TOWN_IDS:
        return None

    now = utc_now_iso()
    raw_id = raw.get("id")
    if isinstance(raw_id, str) and raw_id.strip():
        npc_id = raw_id.strip()
    elif existing is not None:
        npc_id = existing["id"]
    else:
        npc_id = new_id()

    comments_raw = raw.get("comments")
    comments = (existing or {}).get("comments") if comments_raw is None else str(comments_raw).strip()

    npc = {
        "id": npc_id,
        "name": name,
        "title": title,
        "townId": town_id,
        "createdAt": existing["createdAt"] if existing is not None else now,
        "updatedAt": now,
    }
    if comments:
        npc["comments"] = comments
    return npc


def _sorted_npcs(npcs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(npcs, key=lambda npc: npc["townId"] + npc["name"])


class ShopItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id, min_length=1)
    name: str = Field(min_length=1, max_length=200)
    qty: int = Field(default=0, ge=0)
    price_gp: float = Field(default=0, ge=0, alias="priceGp")
    notes: str = ""


class Shop(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id, min_length=1)
    city: str
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    visible_to_players: bool = Field(default=True, alias="visibleToPlayers")
    inventory: list[ShopItem] = Field(default_factory=list)


class ShopLedger(BaseModel):
    shops: list[Shop]


class ShopLedgerSchema(DocumentSchema):
    namespace = "shops"

    def seed(self) -> dict[str, Any]:
        return {
            "shops": [
                {
                    "id": new_id(),
                    "city": "Stonecross",
                    "name": "Stonecross General Wares",
                    "description": "A practical shop selling basics for travelers.",
                    "visibleToPlayers": True,
                    "inventory": [
                        {"id": new_id(), "name": "Rations (1 day)", "qty": 20, "priceGp": 0.5, "notes": ""},
                        {"id": new_id(), "name": "Torch", "qty": 30, "priceGp": 0.01, "notes": ""},
                        {"id": new_id(), "name": "Rope (50 ft)", "qty": 8, "priceGp": 1, "notes": ""},
                    ],
                }
            ]
        }

    def normalize(self, payload: Any, current: Any) -> dict[str, Any]:
        try:
            ledger = ShopLedger.model_validate(_require_object(payload))
        except PydanticValidationError as exc:
            raise _validation_reason(exc, "shop") from exc
        for shop in ledger.shops:
            if shop.city not in SHOP_CITIES:
                raise ValidationError(f"Unknown city {shop.city}", reason="unknown_city")
        return ledger.model_dump(by_alias=True)

    def visible_to_players(self, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        shops = [shop for shop in data.get("shops", []) if shop.get("visibleToPlayers")]
        return {**data, "shops": shops}


class OldGod(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id, min_length=1)
    name: str = Field(min_length=1, max_length=200)
    realm: str = ""
    followers: str = ""
    party_interactions: str = Field(default="", alias="partyInteractions")


class Pantheon(BaseModel):
    gods: list[OldGod]


class PantheonSchema(DocumentSchema):
    namespace = "pantheon"

    def seed(self) -> dict[str, Any]:
        return {"gods": []}

    def normalize(self, payload: Any, current: Any) -> dict[str, Any]:
        try:
            pantheon = Pantheon.model_validate(_require_object(payload))
        except PydanticValidationError as exc:
            raise _validation_reason(exc, "god") from exc
        return pantheon.model_dump(by_alias=True)


class EncounterSchema(DocumentSchema):
    namespace = "combat"

    def seed(self) -> dict[str, Any]:
        return build_initial_encounter()

    def normalize(self, payload: Any, current: Any) -> dict[str, Any]:
        return normalize_encounter(payload)


ROOM_SCHEMAS: dict[str, DocumentSchema] = {
    schema.namespace: schema
    for schema in (MapUnlockSchema(), NpcDirectorySchema(), ShopLedgerSchema(), PantheonSchema())
}
