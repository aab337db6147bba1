"""Scenario catalog: the set of known scene snapshots.

The turn pipeline only needs exact-name lookup and enumeration (to validate
scene-change targets) plus the director's connected-scene listing. Anything
that satisfies the `ScenarioCatalog` protocol will do; `InMemoryScenarioCatalog`
is the bundled implementation, optionally loaded from a JSON file holding a
list of snapshots.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from coc_keeper.models import ScenarioSnapshot

logger = logging.getLogger(__name__)


class ScenarioCatalog(Protocol):
    def get_by_name(self, name: str) -> ScenarioSnapshot | None: ...

    def get_by_id(self, snapshot_id: str) -> ScenarioSnapshot | None: ...

    def all(self) -> list[ScenarioSnapshot]: ...

    def connected(self, snapshot: ScenarioSnapshot) -> list[ScenarioSnapshot]: ...


class InMemoryScenarioCatalog:
    def __init__(self, snapshots: Iterable[ScenarioSnapshot] = ()) -> None:
        self._by_id: dict[str, ScenarioSnapshot] = {}
        for s in snapshots:
            if s.id in self._by_id:
                logger.warning("duplicate snapshot id %r, keeping the first", s.id)
                continue
            self._by_id[s.id] = s

    @classmethod
    def from_json(cls, path: Path) -> InMemoryScenarioCatalog:
        data = json.loads(path.read_text())
        return cls(ScenarioSnapshot.model_validate(item) for item in data)

    def get_by_name(self, name: str) -> ScenarioSnapshot | None:
        """Exact match on snapshot name. Returns a copy safe to install."""
        for s in self._by_id.values():
            if s.name == name:
                return s.model_copy(deep=True)
        return None

    def get_by_id(self, snapshot_id: str) -> ScenarioSnapshot | None:
        s = self._by_id.get(snapshot_id)
        return s.model_copy(deep=True) if s else None

    def all(self) -> list[ScenarioSnapshot]:
        return list(self._by_id.values())

    def names(self) -> list[str]:
        return [s.name for s in self._by_id.values()]

    def connected(self, snapshot: ScenarioSnapshot) -> list[ScenarioSnapshot]:
        """Snapshots listed in `connections`, plus other snapshots of the same parent scenario."""
        result: list[ScenarioSnapshot] = []
        seen = {snapshot.id}
        for sid in snapshot.connections:
            s = self._by_id.get(sid)
            if s is None:
                logger.warning("snapshot %r lists unknown connection %r", snapshot.id, sid)
                continue
            if s.id not in seen:
                seen.add(s.id)
                result.append(s)
        if snapshot.scenario_id:
            for s in self._by_id.values():
                if s.scenario_id == snapshot.scenario_id and s.id not in seen:
                    seen.add(s.id)
                    result.append(s)
        return result
