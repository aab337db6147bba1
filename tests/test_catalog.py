"""Tests for coc_keeper.catalog."""

import json

from coc_keeper.catalog import InMemoryScenarioCatalog
from coc_keeper.models import ScenarioSnapshot


class TestInMemoryScenarioCatalog:
    def test_exact_name_lookup(self, catalog) -> None:
        assert catalog.get_by_name("The Cellar").id == "cellar"
        assert catalog.get_by_name("the cellar") is None
        assert catalog.get_by_name("Cellar") is None

    def test_lookup_returns_copy(self, catalog) -> None:
        snap = catalog.get_by_id("cellar")
        snap.events.append("changed")
        assert catalog.get_by_id("cellar").events == []

    def test_all_and_names(self, catalog) -> None:
        assert catalog.names() == ["The Study", "The Cellar", "The Hall"]
        assert len(catalog.all()) == 3

    def test_connected(self, catalog) -> None:
        study = catalog.get_by_id("study")
        assert [s.id for s in catalog.connected(study)] == ["cellar", "hall"]

    def test_connected_skips_unknown_ids(self) -> None:
        a = ScenarioSnapshot(id="a", name="A", location="A", connections=["ghost"])
        assert InMemoryScenarioCatalog([a]).connected(a) == []

    def test_duplicate_ids_keep_first(self) -> None:
        c = InMemoryScenarioCatalog([
            ScenarioSnapshot(id="a", name="First", location="x"),
            ScenarioSnapshot(id="a", name="Second", location="y"),
        ])
        assert c.get_by_id("a").name == "First"

    def test_from_json(self, tmp_path) -> None:
        path = tmp_path / "scenes.json"
        path.write_text(json.dumps([
            {"id": "dock", "name": "The Docks", "location": "Arkham Docks", "connections": ["pier"]},
            {"id": "pier", "name": "The Pier", "location": "Arkham Pier"},
        ]))
        c = InMemoryScenarioCatalog.from_json(path)
        assert c.get_by_name("The Pier").location == "Arkham Pier"
        assert [s.id for s in c.connected(c.get_by_id("dock"))] == ["pier"]
