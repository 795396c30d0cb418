# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Local index of built images.
Only completed builds are recorded, so every entry names a usable image.
"""

import os
import json
import logging
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, asdict
from pathlib import Path
from datetime import datetime, timezone

from ..MODELS.build_result import BuildResult

logger = logging.getLogger(__name__)


@dataclass
class CachedBuild:
    """Information about a recorded build."""
    fingerprint: str
    recipe_name: str
    base_reference: str
    image_id: Optional[str]
    tag: Optional[str]
    layers: int
    built_at: str


class ImageCache:
    """
    Keeps `index.json` mapping recipe fingerprints to the images built from them.
    """

    def __init__(self, cache_dir: Optional[str] = None):
        """
        Initialize the image cache.

        Args:
            cache_dir: Directory for the index. Defaults to ~/.envprov/cache
        """
        if cache_dir:
            self.cache_dir = Path(cache_dir).expanduser()
        else:
            self.cache_dir = Path.home() / ".envprov" / "cache"
        self.index_file = self.cache_dir / "index.json"
        self._index = self._load_index()

    def _load_index(self) -> Dict[str, Any]:
        if not self.index_file.exists():
            return {"version": 1, "builds": {}}
        try:
            with open(self.index_file, "r") as f:
                index = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Ignoring unreadable cache index %s: %s", self.index_file, e)
            return {"version": 1, "builds": {}}
        if not isinstance(index, dict) or not isinstance(index.get("builds"), dict):
            logger.warning("Ignoring unreadable cache index %s: no builds mapping", self.index_file)
            return {"version": 1, "builds": {}}
        return index

    def _save_index(self) -> None:
        """Write the index through a temporary file so readers never see half of it."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.index_file.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(self._index, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.index_file)

    def record(self, result: BuildResult) -> CachedBuild:
        """
        Record a completed build.

        Args:
            result: The build to record.

        Returns:
            The stored entry.
        """
        entry = CachedBuild(
            fingerprint=result.fingerprint,
            recipe_name=result.recipe_name,
            base_reference=result.base_reference,
            image_id=result.image_id,
            tag=result.tag,
            layers=len(result.layers),
            built_at=datetime.now(timezone.utc).isoformat(),
        )
        self._index["builds"][result.fingerprint] = asdict(entry)
        self._save_index()
        logger.debug("Recorded build %s", result.fingerprint[:12])
        return entry

    def get(self, fingerprint: str) -> Optional[CachedBuild]:
        """Look up the last build of a recipe fingerprint."""
        data = self._index["builds"].get(fingerprint)
        if data is None:
            return None
        return CachedBuild(**data)

    def list_builds(self) -> List[CachedBuild]:
        """All recorded builds, newest first."""
        builds = [CachedBuild(**data) for data in self._index["builds"].values()]
        return sorted(builds, key=lambda b: b.built_at, reverse=True)

    def remove(self, fingerprint: str) -> bool:
        """
        Forget a recorded build.

        Returns:
            True if an entry was removed.
        """
        if fingerprint not in self._index["builds"]:
            return False
        del self._index["builds"][fingerprint]
        self._save_index()
        return True
