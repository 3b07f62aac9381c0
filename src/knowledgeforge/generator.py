"""Boundary to roadmap content generators.

A generator turns free text (a CV, an experience description) into an
ordered list of phases. The engine only checks the structural shape of what
comes back; content quality is the generator's business.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from knowledgeforge.errors import RoadmapShapeError
from knowledgeforge.io_utils import read_json
from knowledgeforge.roadmap.model import Phase


def coerce_phases(raw: Any) -> list[Phase]:
    """Validate decoded generator output and build :class:`Phase` objects.

    Accepts a list of phase objects, or an object wrapping one under
    ``"roadmap"`` or ``"phases"``. Raises :class:`RoadmapShapeError` for
    anything else, including an empty list.
    """
    if isinstance(raw, dict):
        raw = raw.get("roadmap", raw.get("phases"))
    if not isinstance(raw, list):
        raise RoadmapShapeError("roadmap must be a list of phases")
    if not raw:
        raise RoadmapShapeError("roadmap has no phases")

    phases: list[Phase] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise RoadmapShapeError(f"phase {i + 1} is not an object")
        if not isinstance(item.get("title"), str) or not item["title"].strip():
            raise RoadmapShapeError(f"phase {i + 1} has no title")
        tasks = item.get("tasks")
        if not isinstance(tasks, list) or not all(isinstance(t, str) for t in tasks):
            raise RoadmapShapeError(f"phase {i + 1} tasks must be a list of strings")
        phases.append(Phase.from_dict(item))
    return phases


class ContentGenerator(ABC):
    """Produces roadmap phases from a free-text description."""

    name: str = "base"

    @abstractmethod
    def generate(self, text: str, context: str | None = None) -> list[Phase]:
        """Return the phases for *text*; *context* carries optional hints."""
        ...


class JsonFileGenerator(ContentGenerator):
    """Offline generator that replays phases stored in a JSON file."""

    name = "json-file"

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def generate(self, text: str = "", context: str | None = None) -> list[Phase]:
        try:
            raw = read_json(self.path)
        except ValueError as exc:
            raise RoadmapShapeError(f"{self.path} is not valid JSON: {exc}") from exc
        return coerce_phases(raw)
