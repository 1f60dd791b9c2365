import pytest

from tablekeeper.backend.documents import (
    ROOM_SCHEMAS,
    MapUnlockSchema,
    NpcDirectorySchema,
    PantheonSchema,
    ShopLedgerSchema,
)
from tablekeeper.backend.errors import ValidationError


def test_room_schemas_cover_shared_resources() -> None:
    assert sorted(ROOM_SCHEMAS) == ["map-unlocks", "npcs", "pantheon", "shops"]


def test_map_unlocks_deduplicates_in_catalogue_order() -> None:
    data = MapUnlockSchema().normalize({"unlocked": ["westhaven", "stonecross", "westhaven"]}, current=None)

    assert data == {"unlocked": ["stonecross", "westhaven"]}


def test_map_unlocks_rejects_unknown_town_and_bad_shape() -> None:
    with pytest.raises(ValidationError) as unknown:
        MapUnlockSchema().normalize({"unlocked": ["atlantis"]}, current=None)
    with pytest.raises(ValidationError) as missing:
        MapUnlockSchema().normalize({"unlocked": "stonecross"}, current=None)
    with pytest.raises(ValidationError):
        MapUnlockSchema().normalize(["stonecross"], current=None)

    assert unknown.value.reason == "unknown_town"
    assert missing.value.reason == "missing_unlocked"


def test_npc_replacement_drops_invalid_entries_and_sorts() -> None:
    data = NpcDirectorySchema().normalize(
        {
            "npcs": [
                {"name": "Innkeeper", "title": "Host", "townId": "westhaven"},
                {"name": "Nameless", "title": "", "townId": "westhaven"},
                {"name": "Archivist", "title": "Lorekeeper", "townId": "stonecross"},
                {"name": "Ghost", "title": "Spirit", "townId": "atlantis"},
            ]
        },
        current=None,
    )

    assert [npc["name"] for npc in data["npcs"]] == ["Archivist", "Innkeeper"]
    assert all(npc["id"] and npc["createdAt"] for npc in data["npcs"])


def test_npc_upsert_keeps_created_at_and_comments() -> None:
    schema = NpcDirectorySchema()
    created = schema.normalize(
        {"op": "upsert", "npc": {"name": "Harbormaster", "title": "Docks", "townId": "stormwatch", "comments": "Sees all"}},
        current={"npcs": []},
    )
    npc = created["npcs"][0]

    updated = schema.normalize(
        {"op": "upsert", "npc": {"id": npc["id"], "name": "Harbormaster", "title": "Harbor", "townId": "stormwatch"}},
        current=created,
    )

    assert len(updated["npcs"]) == 1
    assert updated["npcs"][0]["title"] == "Harbor"
    assert updated["npcs"][0]["createdAt"] == npc["createdAt"]
    assert updated["npcs"][0]["comments"] == "Sees all"


def test_npc_upsert_and_delete_validation() -> None:
    schema = NpcDirectorySchema()

    with pytest.raises(ValidationError) as upsert:
        schema.normalize({"op": "upsert", "npc": {"name": "No Town", "title": "x"}}, current=None)
    with pytest.raises(ValidationError) as delete:
        schema.normalize({"op": "delete"}, current=None)
    with pytest.raises(ValidationError) as unsupported:
        schema.normalize({"op": "rename"}, current=None)

    assert upsert.value.reason == "invalid_npc"
    assert delete.value.reason == "missing_id"
    assert unsupported.value.reason == "unsupported_operation"


def test_npc_delete_removes_by_id() -> None:
    current = {"npcs": [{"id": "n1", "name": "A", "title": "t", "townId": "sunspire"}]}

    data = NpcDirectorySchema().normalize({"op": "delete", "id": "n1"}, current=current)

    assert data == {"npcs": []}


def test_shop_ledger_normalizes_and_filters_for_players() -> None:
    schema = ShopLedgerSchema()
    data = schema.normalize(
        {
            "shops": [
                {
                    "city": "Stonecross",
                    "name": "General Wares",
                    "inventory": [{"name": "Torch", "qty": 3, "priceGp": 0.01}],
                },
                {"city": "Sunspire", "name": "Back Room", "visibleToPlayers": False},
            ]
        },
        current=None,
    )

    assert data["shops"][0]["visibleToPlayers"] is True
    assert data["shops"][0]["inventory"][0]["priceGp"] == 0.01
    assert data["shops"][0]["inventory"][0]["id"]
    assert [shop["name"] for shop in schema.visible_to_players(data)["shops"]] == ["General Wares"]


def test_shop_ledger_rejects_bad_values() -> None:
    schema = ShopLedgerSchema()

    with pytest.raises(ValidationError) as negative:
        schema.normalize(
            {"shops": [{"city": "Stonecross", "name": "Shop", "inventory": [{"name": "Rope", "qty": -1}]}]},
            current=None,
        )
    with pytest.raises(ValidationError) as city:
        schema.normalize({"shops": [{"city": "Atlantis", "name": "Shop"}]}, current=None)

    assert negative.value.reason == "invalid_shop"
    assert city.value.reason == "unknown_city"


def test_shop_seed_is_a_valid_ledger() -> None:
    schema = ShopLedgerSchema()

    seed = schema.seed()

    assert schema.normalize(seed, current=None)["shops"][0]["name"] == "Stonecross General Wares"


def test_pantheon_requires_god_names() -> None:
    schema = PantheonSchema()

    data = schema.normalize(
        {"gods": [{"name": "Thalassyr", "realm": "The Deep Tides", "partyInteractions": "A pact"}]},
        current=None,
    )
    with pytest.raises(ValidationError) as excinfo:
        schema.normalize({"gods": [{"realm": "Nowhere"}]}, current=None)

    assert data["gods"][0]["partyInteractions"] == "A pact"
    assert data["gods"][0]["followers"] == ""
    assert excinfo.value.reason == "invalid_god"
