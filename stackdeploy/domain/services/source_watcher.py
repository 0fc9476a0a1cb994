import asyncio
import logging
from collections import OrderedDict
from typing import Callable, Optional, Protocol

from stackdeploy.domain.entities import DeploymentRequest, TriggerSource
from stackdeploy.domain.errors import PipelineBusyError, SourceFetchError

logger = logging.getLogger(__name__)


class RevisionSource(Protocol):
    async def resolve_tip(self) -> str: ...


class SourceWatcher:
    """Turns branch-tip changes into DeploymentRequests.

    Notifications are deduplicated by ``(revision_id, trigger_source)`` over
    the last ``dedupe_window`` keys. ``submit`` hands a request to the
    pipeline and raises PipelineBusyError when it cannot take one.
    """

    def __init__(
        self,
        source: RevisionSource,
        submit: Callable[[DeploymentRequest], None],
        poll_interval: float = 60.0,
        backoff_base: float = 5.0,
        backoff_max: float = 300.0,
        last_revision: Optional[str] = None,
        dedupe_window: int = 512,
    ):
        self.source = source
        self.submit = submit
        self.poll_interval = poll_interval
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.last_revision = last_revision
        self.dedupe_window = dedupe_window
        self.consecutive_failures = 0
        self._seen: "OrderedDict[tuple[str, str], None]" = OrderedDict()

    async def resolve_tip(self) -> str:
        return await self.source.resolve_tip()

    def notify(
        self,
        revision_id: str,
        trigger_source: TriggerSource,
        force: bool = False,
    ) -> Optional[DeploymentRequest]:
        """Emit a request for ``revision_id`` unless it is a duplicate notification."""
        key = (revision_id, trigger_source.value)
        if key in self._seen and not force:
            logger.info(f"🔁 Ignoring duplicate {trigger_source.value} notification for {revision_id[:12]}")
            return None

        request = DeploymentRequest(revision_id=revision_id, trigger_source=trigger_source)
        self.submit(request)

        self._seen[key] = None
        self._seen.move_to_end(key)
        while len(self._seen) > self.dedupe_window:
            self._seen.popitem(last=False)
        logger.info(f"📨 Deployment requested for {revision_id[:12]} ({trigger_source.value})")
        return request

    async def poll_once(self) -> Optional[DeploymentRequest]:
        tip = await self.source.resolve_tip()
        if tip == self.last_revision:
            return None

        logger.info(f"🔎 Branch tip moved to {tip[:12]}")
        try:
            request = self.notify(tip, TriggerSource.PUSH_EVENT)
        except PipelineBusyError as e:
            # Leave last_revision untouched so the next poll tries again.
            logger.warning(f"⚠️ Pipeline busy, will retry {tip[:12]} on next poll: {e.message}")
            return None
        self.last_revision = tip
        return request

    def backoff_delay(self) -> float:
        if self.consecutive_failures == 0:
            return self.poll_interval
        return min(self.backoff_base * 2 ** (self.consecutive_failures - 1), self.backoff_max)

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info(f"👀 Source watcher started (interval {self.poll_interval}s)")
        while not stop_event.is_set():
            try:
                await self.poll_once()
                self.consecutive_failures = 0
            except SourceFetchError as e:
                self.consecutive_failures += 1
                logger.warning(
                    f"⚠️ Revision source unreachable ({self.consecutive_failures} in a row), "
                    f"retrying in {self.backoff_delay():.1f}s: {e.message}"
                )
            except Exception:
                self.consecutive_failures += 1
                logger.exception("💥 Unexpected error while polling the revision source")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.backoff_delay())
            except asyncio.TimeoutError:
                pass
        logger.info("👋 Source watcher stopped")
