import logging
from pathlib import Path
from typing import List, Optional

from stackdeploy.domain.entities import DeploymentOutcome, OutcomeResult

logger = logging.getLogger(__name__)


class OutcomeStore:
    """Append-only log of terminal deployment outcomes (JSON lines)."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._outcomes: List[DeploymentOutcome] = self._load()

    def _load(self) -> List[DeploymentOutcome]:
        if not self.path or not self.path.exists():
            return []
        outcomes = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                outcomes.append(DeploymentOutcome.model_validate_json(line))
        return outcomes

    def append(self, outcome: DeploymentOutcome) -> None:
        if any(o.request_id == outcome.request_id for o in self._outcomes):
            raise ValueError(f"outcome for request {outcome.request_id} already recorded")
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(outcome.model_dump_json() + "\n")
        self._outcomes.append(outcome)
        logger.info(f"📝 Outcome {outcome.result.value} for {outcome.revision_id[:12]}")

    def recent(self, limit: int = 20) -> List[DeploymentOutcome]:
        return list(reversed(self._outcomes[-limit:]))

    def last_success(self, exclude_tag: Optional[str] = None) -> Optional[DeploymentOutcome]:
        """Most recent success, skipping those that built ``exclude_tag``."""
        for outcome in reversed(self._outcomes):
            if outcome.result != OutcomeResult.SUCCESS or not outcome.image_tag:
                continue
            if exclude_tag is None or outcome.image_tag != exclude_tag:
                return outcome
        return None

    def for_request(self, request_id: str) -> Optional[DeploymentOutcome]:
        for outcome in self._outcomes:
            if outcome.request_id == request_id:
                return outcome
        return None
