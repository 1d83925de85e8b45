"""Readiness checks: network, store and location capability."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Callable

from trip_tracker.devices import ConnectivityMonitor, LocationProvider, PositionError, PositionOptions
from trip_tracker.models import USERS, CheckStatus, DiagnosticsState
from trip_tracker.store import Store

logger = logging.getLogger(__name__)


class DiagnosticsProber:
    """Runs the three checks concurrently and returns one snapshot.

    Each check only touches its own field, so their completion order does not
    matter. Failures are reported in the snapshot, never raised. The prober
    keeps no subscriptions and can be re-run at any time.
    """

    def __init__(
        self,
        store: Store,
        provider: LocationProvider,
        connectivity: ConnectivityMonitor,
        *,
        probe_timeout_seconds: float = 10.0,
        on_update: Callable[[DiagnosticsState], None] | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._connectivity = connectivity
        self._timeout = probe_timeout_seconds
        self._on_update = on_update
        self._state = DiagnosticsState()

    @property
    def last(self) -> DiagnosticsState:
        return self._state

    def _set(self, **changes: object) -> None:
        self._state = dataclasses.replace(self._state, **changes)
        if self._on_update is not None:
            self._on_update(self._state)

    async def probe(self) -> DiagnosticsState:
        self._set(
            network=CheckStatus.CHECKING,
            store=CheckStatus.CHECKING,
            location=CheckStatus.CHECKING,
            location_error=None,
            store_error=None,
        )
        await asyncio.gather(self._check_network(), self._check_store(), self._check_location())
        logger.info(
            "diagnostics: network=%s store=%s location=%s",
            self._state.network.value,
            self._state.store.value,
            self._state.location.value,
        )
        return self._state

    async def _check_network(self) -> None:
        try:
            online = self._connectivity.is_online()
        except OSError as exc:
            logger.warning("connectivity query failed: %s", exc)
            online = False
        self._set(network=CheckStatus.OK if online else CheckStatus.ERROR)

    async def _check_store(self) -> None:
        try:
            await self._store.query(USERS, {}, limit=1)
        except Exception as exc:
            logger.error("diagnostic store read failed: %s", exc)
            self._set(store=CheckStatus.ERROR, store_error=f"Database error: {exc}")
            return
        self._set(store=CheckStatus.OK)

    async def _check_location(self) -> None:
        options = PositionOptions(high_accuracy=True, maximum_age_seconds=0.0, timeout_seconds=self._timeout)
        try:
            # the provider gets a chance to time out on its own first
            await asyncio.wait_for(self._provider.get_current_position(options), timeout=self._timeout + 1.0)
        except PositionError as err:
            logger.warning("location check failed (%s): %s", err.kind.value, err)
            self._set(location=CheckStatus.ERROR, location_error=err.kind.value)
            return
        except TimeoutError:
            logger.warning("location check timed out after %.0fs", self._timeout)
            self._set(location=CheckStatus.ERROR, location_error="timeout")
            return
        self._set(location=CheckStatus.OK)
