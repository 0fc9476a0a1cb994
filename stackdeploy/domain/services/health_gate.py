"""
Bounded health polling for a single tier.

Probe failures inside the start period are not counted; after that every
failed probe consumes one retry. Running out of retries is a timeout, not an
error in the probe itself.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from stackdeploy.domain.entities import StackState, TierStatus
from stackdeploy.domain.errors import HealthCheckTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthPolicy:
    interval: float = 10.0
    timeout: float = 5.0
    retries: int = 5
    start_period: float = 30.0

    @classmethod
    def from_settings(cls, settings) -> "HealthPolicy":
        return cls(
            interval=settings.HEALTH_INTERVAL_SECONDS,
            timeout=settings.HEALTH_TIMEOUT_SECONDS,
            retries=settings.HEALTH_RETRIES,
            start_period=settings.HEALTH_START_PERIOD_SECONDS,
        )


class HealthProbe(Protocol):
    async def check(self, state: StackState) -> bool: ...


class HealthGate:
    def __init__(
        self,
        policy: HealthPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy
        self._sleep = sleep
        self._clock = clock

    async def _probe_once(self, probe: HealthProbe, state: StackState) -> bool:
        try:
            return await asyncio.wait_for(probe.check(state), timeout=self.policy.timeout)
        except asyncio.TimeoutError:
            logger.debug(f"{state.tier.value} probe timed out after {self.policy.timeout}s")
            return False
        except Exception as e:
            logger.debug(f"{state.tier.value} probe raised {type(e).__name__}: {e}")
            return False

    async def wait(self, state: StackState, probe: HealthProbe) -> StackState:
        """Poll ``probe`` until ``state`` is healthy; raise HealthCheckTimeout otherwise."""
        started = self._clock()
        attempts = 0
        failures = 0

        while True:
            attempts += 1
            if await self._probe_once(probe, state):
                logger.info(f"✅ {state.tier.value} tier healthy after {attempts} probe(s)")
                return state.transition(TierStatus.HEALTHY)

            if self._clock() - started >= self.policy.start_period:
                failures += 1
            logger.info(
                f"⏳ {state.tier.value} probe {attempts} failed "
                f"({failures}/{self.policy.retries} retries used)"
            )
            if failures >= self.policy.retries:
                logger.warning(f"💥 {state.tier.value} tier unhealthy after {attempts} probes")
                raise HealthCheckTimeout(state.tier.value, attempts, state=state.transition(TierStatus.UNHEALTHY))

            await self._sleep(self.policy.interval)
