# Scale-from-zero controller
# When a function has no running replicas, an incoming invocation asks the control plane for
# min_replicas (or 1) and holds the request open until capacity shows up or the poll budget runs out.
import asyncio
import enum
import logging
import time
from typing import NamedTuple, Optional

from control_plane.errors import ReplicaQueryError, ScaleCancelledError, ScaleCommandError
from control_plane.function_cache import FunctionCache
from control_plane.service_query import ServiceQuery

logger = logging.getLogger(__name__)


def _unexpected(function_name: str, cause: Exception) -> ReplicaQueryError:
    """Wraps an error the service query did not translate itself."""
    logger.exception(f"Unexpected error querying function {function_name}")
    error = ReplicaQueryError(function_name, f"unexpected error querying function [{function_name}]: {cause!r}")
    error.__cause__ = cause
    return error


class ScalingConfig(NamedTuple):
    # Attempts to query a function after a scale-up before giving up
    max_poll_count: int
    # Seconds to wait between polls of a function's readiness
    function_poll_interval: float
    # Seconds a cached observation stays valid
    cache_expiry: float
    # Reads and sets replica counts
    service_query: ServiceQuery
    # Trust a fresh cached observation with replicas > 0 instead of querying
    cache_fast_path: bool = False


class ScaleState(enum.Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"


class ScaleResult(NamedTuple):
    available: bool
    found: bool
    error: Optional[Exception]
    duration: float
    state: ScaleState


class FunctionScaler:
    """
    Scales functions from zero to N replicas.
    One instance is shared by every in-flight request; the cache is its only mutable state.
    """
    def __init__(self, config: ScalingConfig, cache: Optional[FunctionCache] = None):
        self.config = config
        self.cache = cache if cache is not None else FunctionCache(config.cache_expiry)

    async def scale(self, function_name: str, cancel: Optional[asyncio.Event] = None) -> ScaleResult:
        """
        Makes sure `function_name` has at least one available replica.

        Args:
            function_name: The function the request is addressed to.
            cancel: Optional event that aborts the polling wait when set.
        Returns:
            ScaleResult. A timeout is reported as available=False, found=True, error=None.
        """
        start = time.monotonic()

        if self.config.cache_fast_path:
            cached, hit = self.cache.get(function_name)
            if hit and cached.available_replicas > 0:
                return self._result(start, ScaleState.READY)

        query = self.config.service_query
        try:
            observation = await query.get_replicas(function_name)
        except ReplicaQueryError as e:
            return self._result(start, ScaleState.NOT_FOUND, error=e)
        except Exception as e:
            return self._result(start, ScaleState.NOT_FOUND, error=_unexpected(function_name, e))

        self.cache.set(function_name, observation)

        if observation.available_replicas > 0:
            return self._result(start, ScaleState.READY)

        min_replicas = observation.min_replicas if observation.min_replicas > 0 else 1
        logger.info(f"[Scale] function={function_name} 0 => {min_replicas} requested")

        try:
            await query.set_replicas(function_name, min_replicas)
        except Exception as e:
            if not isinstance(e, ReplicaQueryError):
                logger.exception(f"Unexpected error scaling function {function_name}")
            error = ScaleCommandError(function_name, f"unable to scale function [{function_name}], err: {e}")
            error.__cause__ = e
            return self._result(start, ScaleState.FAILED, error=error)

        for _ in range(self.config.max_poll_count):
            try:
                observation = await query.get_replicas(function_name)
            except ReplicaQueryError as e:
                return self._result(start, ScaleState.FAILED, error=e)
            except Exception as e:
                return self._result(start, ScaleState.FAILED, error=_unexpected(function_name, e))

            self.cache.set(function_name, observation)

            if observation.available_replicas > 0:
                result = self._result(start, ScaleState.READY)
                logger.info(
                    f"[Scale] function={function_name} 0 => {observation.available_replicas} "
                    f"successful - {result.duration:.3f} seconds"
                )
                return result

            if await self._wait(cancel):
                return self._result(start, ScaleState.CANCELLED, error=ScaleCancelledError(function_name))

        return self._result(start, ScaleState.TIMED_OUT)

    async def _wait(self, cancel: Optional[asyncio.Event]) -> bool:
        """Sleeps one poll interval. Returns True if `cancel` fired first."""
        interval = self.config.function_poll_interval
        if cancel is None:
            await asyncio.sleep(interval)
            return False
        try:
            await asyncio.wait_for(cancel.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return False
        return True

    @staticmethod
    def _result(start: float, state: ScaleState, error: Optional[Exception] = None) -> ScaleResult:
        return ScaleResult(
            available=state is ScaleState.READY,
            found=state is not ScaleState.NOT_FOUND,
            error=error,
            duration=time.monotonic() - start,
            state=state,
        )
