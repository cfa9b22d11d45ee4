"""Bundled static payloads parsed when a live fetch fails."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger

BUNDLED_FIXTURES_DIR = Path(__file__).resolve().parents[1] / "fixtures"

logger = get_logger(__name__)


class FixtureLoader:
    """Reads `<name>.json` from the fixtures directory when the fallback flag is on."""

    def __init__(self, settings: Optional[Settings] = None, *, directory: Optional[Path] = None):
        config = settings or get_settings()
        self.enabled = bool(config.enable_fixture_fallback)
        if directory is not None:
            self.directory = Path(directory)
        elif config.fixtures_dir:
            self.directory = Path(config.fixtures_dir)
        else:
            self.directory = BUNDLED_FIXTURES_DIR

    def load(self, name: str) -> Any:
        if not self.enabled:
            raise ValueError("fixture fallback is disabled; set ENABLE_FIXTURE_FALLBACK=true")
        path = self.directory / f"{name}.json"
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        logger.info("fixtures.loaded", extra={"fixture": name, "path": str(path)})
        return data
