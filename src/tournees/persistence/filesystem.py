"""File-based persistence for tours and their exports."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..config import settings
from ..models.domain import Tour
from ..services.outputs.tour_formatter import tour_from_json, tour_to_json


class FileStorage:
    """Thin wrapper around the data root for storing tours and export snapshots."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.tours_root = self.root / "tours"
        self.output_root = self.root / "outputs"
        self.tours_root.mkdir(parents=True, exist_ok=True)
        self.output_root.mkdir(parents=True, exist_ok=True)

    def _tour_path(self, tour_id: str) -> Path:
        if not tour_id or "/" in tour_id or "\\" in tour_id or tour_id.startswith("."):
            raise ValueError(f"Invalid tour id '{tour_id}'.")
        return self.tours_root / f"{tour_id}.json"

    def save_tour(self, tour: Tour) -> str:
        self.write_json(self._tour_path(tour.tour_id), tour_to_json(tour))
        return tour.tour_id

    def load_tour(self, tour_id: str) -> Tour:
        path = self._tour_path(tour_id)
        if not path.exists():
            raise FileNotFoundError(f"Tour file not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            return tour_from_json(json.load(handle))

    def list_tour_ids(self) -> list[str]:
        return sorted(path.stem for path in self.tours_root.glob("*.json"))

    def make_run_directory(self, prefix: str = "tour") -> Path:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = self.output_root / f"{prefix}_{timestamp}"
        path.mkdir(parents=True, exist_ok=False)
        return path

    def write_json(self, path: Path, data: Any, *, indent: int = 2) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, indent=indent)

    def write_csv(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            handle.write(content)
