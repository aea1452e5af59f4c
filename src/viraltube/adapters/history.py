"""JSON-file topic history over the curated catalogue."""

import json
import logging
import os
import random
from typing import List, Optional, Sequence

from viraltube.adapters.catalog import CATALOG
from viraltube.config import TOPIC_HISTORY_FILE
from viraltube.domain.models import Topic
from viraltube.ports.interfaces import ITopicHistory

logger = logging.getLogger(__name__)


class JsonTopicHistory(ITopicHistory):
    """Used topic ids persisted as a JSON list. Exhaustion resets the loop."""

    def __init__(
        self,
        path: str = TOPIC_HISTORY_FILE,
        catalog: Optional[Sequence[Topic]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.path = path
        self.catalog = list(CATALOG if catalog is None else catalog)
        self._rng = rng or random.Random()

    def used_ids(self) -> List[str]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Topic history unreadable (%s); starting fresh", exc)
            return []
        return [str(item) for item in data] if isinstance(data, list) else []

    def _write(self, ids: List[str]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(ids, f, indent=2)

    def pick_unused(self) -> Optional[Topic]:
        if not self.catalog:
            return None
        used = set(self.used_ids())
        available = [topic for topic in self.catalog if topic.id not in used]
        if not available:
            logger.warning("All topics covered! Resetting history loop.")
            self.reset()
            return self._rng.choice(self.catalog)
        return self._rng.choice(available)

    def mark_used(self, topic_id: str) -> None:
        ids = self.used_ids()
        if topic_id not in ids:
            ids.append(topic_id)
            self._write(ids)

    def reset(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
