"""Credential pool with per-slot rate-limit backoff.

Credentials are grouped by OperationKey (provider + operation). Each
(OperationKey, credential_id) pair is its own CredentialSlot, so backoff
earned by one operation never throttles another, even when both are
configured with the same secret.

Backoff after a rate limit:
    backoff_until = max(backoff_until, now + base * 2^min(hits, cap_exponent))

``hits`` counts consecutive rejections; a rejection arriving more than
``hit_window_seconds`` after the previous one starts the count again.
"""

import threading
import time
from typing import Callable, Dict, List, Optional

import structlog
from pydantic import SecretStr

from answerscope.models.credentials import (
    CredentialSlot,
    KeyPoolEntry,
    OperationKey,
    SlotSnapshot,
)
from answerscope.observability.metrics import CREDENTIAL_BACKOFFS
from answerscope.utils.exceptions import (
    CredentialsCoolingDown,
    UnknownOperationError,
)

logger = structlog.get_logger()


class _Namespace:
    """Slots and backoff policy for one OperationKey"""

    def __init__(self, entry: KeyPoolEntry, slots: List[CredentialSlot]):
        self.entry = entry
        self.slots = slots
        self.select_lock = threading.Lock()


class KeyPool:
    """Hands out credentials per operation and tracks their backoff.

    Thread-safe: slot mutations happen under a per-slot lock, and slot
    selection plus its last_used_at stamp happen under a per-namespace lock.
    """

    def __init__(
        self,
        entries: List[KeyPoolEntry],
        credentials: Dict[str, SecretStr],
        clock: Optional[Callable[[], float]] = None,
    ):
        self._clock = clock or time.monotonic
        self._namespaces: Dict[OperationKey, _Namespace] = {}
        self._slot_locks: Dict[int, threading.Lock] = {}

        for entry in entries:
            slots = []
            for credential_id in entry.credentials:
                slot = CredentialSlot(
                    operation=entry.key,
                    credential_id=credential_id,
                    secret=credentials[credential_id],
                )
                self._slot_locks[id(slot)] = threading.Lock()
                slots.append(slot)
            self._namespaces[entry.key] = _Namespace(entry, slots)

        logger.info(
            "key_pool_initialized",
            operations=[str(k) for k in self._namespaces],
            slots=len(self._slot_locks),
        )

    def has_operation(self, operation: OperationKey) -> bool:
        return operation in self._namespaces

    def acquire(self, operation: OperationKey) -> CredentialSlot:
        """Pick the least recently used credential that is not backing off.

        Args:
            operation: Provider and operation the credential will back

        Returns:
            The chosen slot, with last_used_at updated

        Raises:
            CredentialsCoolingDown: Every slot is inside its backoff window
            UnknownOperationError: No credentials configured for ``operation``
        """
        namespace = self._namespaces.get(operation)
        if namespace is None:
            raise UnknownOperationError(f"No credentials configured for {operation}")

        with namespace.select_lock:
            now = self._clock()
            available = [s for s in namespace.slots if not s.is_backing_off(now)]
            if not available:
                retry_after = min(s.backoff_until for s in namespace.slots) - now
                logger.info(
                    "credentials_cooling_down",
                    operation=str(operation),
                    retry_after=round(retry_after, 3),
                )
                raise CredentialsCoolingDown(operation, retry_after)

            # Never-used slots sort first
            slot = min(
                available,
                key=lambda s: -1.0 if s.last_used_at is None else s.last_used_at,
            )
            with self._slot_locks[id(slot)]:
                slot.last_used_at = now
            return slot

    def get_slot(
        self, operation: OperationKey, credential_id: str
    ) -> CredentialSlot:
        """Look up a specific slot, ignoring backoff.

        Async jobs must be polled with the credential that created them.
        """
        namespace = self._namespaces.get(operation)
        if namespace is None:
            raise UnknownOperationError(f"No credentials configured for {operation}")
        for slot in namespace.slots:
            if slot.credential_id == credential_id:
                return slot
        raise UnknownOperationError(
            f"Credential '{credential_id}' is not configured for {operation}"
        )

    def record_rate_limit(
        self, slot: CredentialSlot, retry_after: Optional[float] = None
    ) -> float:
        """Penalize a slot after the upstream returned a rate limit.

        Args:
            slot: Slot that was used for the rejected call
            retry_after: Upstream hint; raises the delay up to the ceiling

        Returns:
            The slot's new backoff_until
        """
        entry = self._namespaces[slot.operation].entry
        ceiling = entry.backoff_base_seconds * (2**entry.backoff_cap_exponent)

        with self._slot_locks[id(slot)]:
            now = self._clock()
            if (
                slot.last_rate_limit_at is not None
                and now - slot.last_rate_limit_at > entry.hit_window_seconds
            ):
                slot.consecutive_rate_limit_hits = 0

            slot.consecutive_rate_limit_hits += 1
            slot.last_rate_limit_at = now

            exponent = min(slot.consecutive_rate_limit_hits, entry.backoff_cap_exponent)
            delay = entry.backoff_base_seconds * (2**exponent)
            if retry_after is not None and retry_after > delay:
                delay = min(retry_after, ceiling)

            slot.backoff_until = max(slot.backoff_until, now + delay)
            backoff_until = slot.backoff_until
            hits = slot.consecutive_rate_limit_hits

        CREDENTIAL_BACKOFFS.labels(
            provider=slot.operation.provider,
            operation=slot.operation.operation.value,
        ).inc()
        logger.warning(
            "credential_backoff_applied",
            operation=str(slot.operation),
            credential_id=slot.credential_id,
            hits=hits,
            backoff_seconds=round(delay, 3),
        )
        return backoff_until

    def record_success(self, slot: CredentialSlot) -> None:
        """Reset the consecutive rate-limit counter after a successful call."""
        with self._slot_locks[id(slot)]:
            slot.consecutive_rate_limit_hits = 0

    def snapshot(self) -> List[SlotSnapshot]:
        """Current state of every slot, for status endpoints."""
        now = self._clock()
        snapshots = []
        for key, namespace in self._namespaces.items():
            for slot in namespace.slots:
                with self._slot_locks[id(slot)]:
                    remaining = max(0.0, slot.backoff_until - now)
                    snapshots.append(
                        SlotSnapshot(
                            provider=key.provider,
                            operation=key.operation,
                            credential_id=slot.credential_id,
                            consecutive_rate_limit_hits=(
                                slot.consecutive_rate_limit_hits
                            ),
                            backing_off=slot.is_backing_off(now),
                            backoff_remaining_seconds=remaining,
                        )
                    )
        return snapshots
