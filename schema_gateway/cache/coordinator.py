"""
Refresh Coordinator - Stale-while-revalidate with single-flight refresh.

For each registered key the coordinator decides, on every read, whether to
serve from the store and whether to start a fetch:

1. Fresh value   -> returned immediately, no fetch
2. Stale value   -> returned immediately, one background refresh started
3. No value      -> fetched in the caller's thread; concurrent cold readers
                    wait on the same in-flight fetch instead of starting their own

An in-flight fetch is represented by a concurrent.futures.Future stored per
key, so every trigger for a key that is already being fetched joins the
existing operation. A periodic sweep refreshes expired keys even when
nobody reads them, which bounds served staleness to TTL + sweep interval.

Failed background refreshes are logged and leave the stale value in place.
Failed cold fetches raise ColdFetchFailure to every waiting reader.
"""
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from schema_gateway.cache.store import Clock, TTLCacheStore, epoch_ms
from schema_gateway.core.exceptions import ColdFetchFailure
from schema_gateway.core.logging_config import get_logger
from schema_gateway.models.schema import CacheKeyState

logger = get_logger(__name__)


@dataclass
class KeySpec:
    """
    How to fetch one cache key.

    Attributes:
        key: Cache key
        fetch: Performs the upstream fetch; the returned value should carry fetched_at
        ttl_ms: Age at which the value becomes stale
        on_fetched: Called outside the lock with each fetched value the store accepted
    """
    key: str
    fetch: Callable[[], Any]
    ttl_ms: int
    on_fetched: Optional[Callable[[Any], Any]] = None


class RefreshCoordinator:
    """
    Orchestrates the cache store and upstream fetches.

    Example:
        >>> coordinator = RefreshCoordinator(TTLCacheStore())
        >>> coordinator.register("org_schema", fetch_schema, ttl_ms=3_600_000)
        >>> snapshot = coordinator.read("org_schema")   # cold: fetches
        >>> snapshot = coordinator.read("org_schema")   # fresh: no I/O
    """

    def __init__(
        self,
        store: TTLCacheStore,
        clock: Optional[Clock] = None,
        sweep_interval_seconds: float = 60.0,
        max_workers: int = 4,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.store = store
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock or epoch_ms
        self._pool = executor or ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="schema-refresh"
        )

        self._specs: Dict[str, KeySpec] = {}
        self._inflight: Dict[str, Future] = {}
        # Bumped by clear() so fetches started before the clear are not stored
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

        logger.info(
            f"RefreshCoordinator initialized: sweep_interval={sweep_interval_seconds}s, "
            f"workers={max_workers}"
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        key: str,
        fetch: Callable[[], Any],
        ttl_ms: int,
        on_fetched: Optional[Callable[[Any], Any]] = None,
    ) -> KeySpec:
        """Register a key. Registering an already known key keeps the first spec."""
        with self._lock:
            spec = self._specs.get(key)
            if spec is None:
                spec = KeySpec(key=key, fetch=fetch, ttl_ms=ttl_ms, on_fetched=on_fetched)
                self._specs[key] = spec
                logger.debug(f"Registered cache key '{key}' (ttl={ttl_ms}ms)")
            return spec

    def unregister(self, key: str) -> bool:
        """Forget a key that holds no value and has no fetch in flight."""
        with self._lock:
            if key in self._inflight or key in self.store:
                return False
            return self._specs.pop(key, None) is not None

    def is_registered(self, key: str) -> bool:
        with self._lock:
            return key in self._specs

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._specs.keys())

    def ttl(self, key: str) -> int:
        return self._spec(key).ttl_ms

    def _spec(self, key: str) -> KeySpec:
        with self._lock:
            spec = self._specs.get(key)
        if spec is None:
            raise KeyError(f"Unknown cache key: {key}")
        return spec

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self, key: str) -> Any:
        """
        Serve a key using stale-while-revalidate.

        Raises:
            KeyError: If the key was never registered
            ColdFetchFailure: If there is no cached value and the fetch failed
        """
        spec = self._spec(key)
        lookup = self.store.get(key)

        if lookup.present and lookup.age_ms < spec.ttl_ms:
            return lookup.value

        if lookup.present:
            logger.debug(f"Serving stale '{key}' (age={lookup.age_ms}ms), refreshing")
            self._start_background(spec)
            return lookup.value

        return self._cold_fetch(spec)

    def _cold_fetch(self, spec: KeySpec) -> Any:
        with self._lock:
            # Another reader may have completed the cold fetch meanwhile
            lookup = self.store.get(spec.key)
            if lookup.present:
                return lookup.value

            future = self._inflight.get(spec.key)
            owner = future is None
            if owner:
                future = self._new_inflight(spec.key)
                generation = self._generations.get(spec.key, 0)

        if owner:
            logger.info(f"Cold fetch for '{spec.key}'")
            self._run_pipeline(spec, future, generation, background=False)
        else:
            logger.debug(f"Waiting on in-flight fetch for '{spec.key}'")

        try:
            return future.result()
        except ColdFetchFailure:
            raise
        except Exception as e:
            raise ColdFetchFailure(spec.key, e) from e

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    def trigger(self, key: str, force: bool = False) -> Optional[Future]:
        """
        Start a background fetch for a key.

        Without force, a fresh key is left alone. With force, the key is
        refetched whatever its age. Either way an in-flight fetch is joined
        rather than duplicated.

        Returns:
            The in-flight future, or None if nothing was started
        """
        spec = self._spec(key)
        if not force:
            lookup = self.store.get(key)
            if lookup.present and lookup.age_ms < spec.ttl_ms:
                return None
        return self._start_background(spec)

    def refresh(self, key: Optional[str] = None) -> Dict[str, Future]:
        """Force a background refresh of one key, or of every registered key."""
        keys = [key] if key is not None else self.keys()
        futures = {}
        for k in keys:
            future = self.trigger(k, force=True)
            if future is not None:
                futures[k] = future
        logger.info(f"Manual refresh started for {len(futures)} key(s)")
        return futures

    def _start_background(self, spec: KeySpec) -> Future:
        with self._lock:
            future = self._inflight.get(spec.key)
            if future is not None:
                return future
            future = self._new_inflight(spec.key)
            generation = self._generations.get(spec.key, 0)

        try:
            self._pool.submit(self._run_pipeline, spec, future, generation, True)
        except RuntimeError as e:
            # Pool already shut down
            logger.warning(f"Could not schedule refresh for '{spec.key}': {e}")
            with self._lock:
                self._release(spec.key, future)
            future.set_exception(e)
        return future

    def _new_inflight(self, key: str) -> Future:
        # Caller holds self._lock
        future: Future = Future()
        future.set_running_or_notify_cancel()
        self._inflight[key] = future
        return future

    def _run_pipeline(
        self, spec: KeySpec, future: Future, generation: int, background: bool
    ) -> None:
        """
        Fetch, store, release the in-flight slot, then run on_fetched.

        Only the generation check and the store write happen under the
        lock; on_fetched (disk I/O for the org schema) runs outside it and
        only for values the store accepted. The slot is released before the
        future resolves, so anyone woken by the result already sees the key
        as no longer fetching.
        """
        try:
            value = spec.fetch()
            timestamp = getattr(value, "fetched_at", None)
            if timestamp is None:
                timestamp = self._clock()

            with self._lock:
                current = self._generations.get(spec.key, 0) == generation
                stored = current and self.store.set(spec.key, value, timestamp)
                self._release(spec.key, future)

            if stored:
                logger.info(f"Refreshed '{spec.key}' (fetched_at={timestamp})")
                self._notify_fetched(spec, value)
            elif current:
                logger.info(f"Kept newer cached '{spec.key}', fetch at {timestamp} is older")
            else:
                logger.info(f"Discarded fetch for '{spec.key}': key was cleared meanwhile")
            future.set_result(value)
        except Exception as e:
            if background:
                logger.warning(
                    f"Background refresh failed for '{spec.key}', keeping cached value: {e}"
                )
            else:
                logger.error(f"Cold fetch failed for '{spec.key}': {e}")
            with self._lock:
                self._release(spec.key, future)
            future.set_exception(e)

    def _notify_fetched(self, spec: KeySpec, value: Any) -> None:
        if spec.on_fetched is None:
            return
        try:
            spec.on_fetched(value)
        except Exception as e:
            # The value is already cached; a failed side effect does not undo that
            logger.error(f"on_fetched hook failed for '{spec.key}': {e}")

    def _release(self, key: str, future: Future) -> None:
        # Caller holds self._lock
        if self._inflight.get(key) is future:
            del self._inflight[key]

    def wait_for_refresh(self, key: str, timeout: Optional[float] = None) -> bool:
        """
        Block until the in-flight fetch for a key (if any) completes.

        Returns:
            False if the timeout expired first
        """
        with self._lock:
            future = self._inflight.get(key)
        if future is None:
            return True
        done, _ = wait([future], timeout=timeout)
        return bool(done)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """
        Start a background refresh for every cached key past its TTL.

        Empty keys are skipped: they are fetched on their next read.

        Returns:
            Number of keys triggered
        """
        triggered = 0
        for key in self.keys():
            spec = self._spec(key)
            lookup = self.store.get(key)
            if lookup.present and lookup.age_ms >= spec.ttl_ms:
                self._start_background(spec)
                triggered += 1
        if triggered:
            logger.info(f"Sweep triggered refresh of {triggered} stale key(s)")
        return triggered

    def start(self) -> None:
        """Start the periodic sweep thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="schema-cache-sweeper", daemon=True
        )
        self._sweeper.start()
        logger.info(f"Staleness sweep started (every {self.sweep_interval_seconds}s)")

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Staleness sweep failed: {e}")

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Stop the sweep and the refresh pool."""
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        self._pool.shutdown(wait=wait_for_pending)
        logger.info("RefreshCoordinator shut down")

    # ------------------------------------------------------------------
    # State and administration
    # ------------------------------------------------------------------

    def state(self, key: str) -> CacheKeyState:
        spec = self._spec(key)
        with self._lock:
            fetching = key in self._inflight
        lookup = self.store.get(key)
        if fetching:
            return CacheKeyState.FETCHING
        if not lookup.present:
            return CacheKeyState.EMPTY
        if lookup.age_ms < spec.ttl_ms:
            return CacheKeyState.FRESH
        return CacheKeyState.STALE

    def clear(self, key: Optional[str] = None) -> int:
        """
        Return one key (or every key) to EMPTY.

        Fetches already in flight for the cleared keys finish but their
        results are not stored.

        Returns:
            Number of cached values removed
        """
        with self._lock:
            if key is None:
                keys = set(self._specs) | set(self.store.keys())
            else:
                keys = {key}
            for k in keys:
                self._generations[k] = self._generations.get(k, 0) + 1
                self._inflight.pop(k, None)
            removed = self.store.clear(key)
        logger.info(f"Cleared {removed} cached value(s) ({key or 'all keys'})")
        return removed
