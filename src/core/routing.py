"""User-to-thread routing table (core domain).

The routing table is the only shared mutable state besides the message log.
Lookups fail soft: a miss is returned as NotFound and capability failures are
reported as ProvisioningFailed, never as platform-specific exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Optional

from core.chat_ids import build_routing_key
from core.errors import ProvisioningFailed
from core.models import (
    EntryLookup,
    NotFound,
    Platform,
    PlatformLookup,
    RoutingEntry,
    SenderProfile,
)
from core.ports import ContactNotifierPort, RoutingStorePort, ThreadCreatorPort

LOGGER = logging.getLogger(__name__)

# Telegram rejects forum topic titles longer than this.
MAX_THREAD_TITLE = 128


def thread_title(entry: RoutingEntry) -> str:
    """Return the forum topic title used for an entry."""

    title = entry.label
    if entry.username:
        title = f"{title} (@{entry.username})"
    if entry.platform is not Platform.TELEGRAM:
        title = f"[{entry.platform.value}] {title}"
    return title[:MAX_THREAD_TITLE]


class RoutingTable:
    """Maps end users to staff threads and provisions threads on demand."""

    def __init__(
        self,
        store: RoutingStorePort,
        thread_creator: ThreadCreatorPort,
        staff_chat_id: str,
        contact_notifier: Optional[ContactNotifierPort] = None,
    ) -> None:
        self._store = store
        self._threads = thread_creator
        self._staff_chat_id = staff_chat_id
        self._notifier = contact_notifier
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._unsaved_threads: dict[int, int] = {}

    def set_contact_notifier(self, notifier: ContactNotifierPort) -> None:
        self._notifier = notifier

    def _lock_for(self, platform: Platform, external_chat_id: str) -> asyncio.Lock:
        key = build_routing_key(platform, external_chat_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def entry_by_thread(self, thread_id: Optional[int]) -> EntryLookup:
        """Return the entry owning a thread, or NotFound."""

        key = f"thread:{thread_id}"
        if thread_id is None:
            return NotFound(key)
        try:
            entry = self._store.get_entry_by_thread(thread_id)
        except Exception:
            LOGGER.exception("Routing lookup failed for thread %s", thread_id)
            return NotFound(key)
        if entry is None:
            LOGGER.warning("No routing entry for thread %s", thread_id)
            return NotFound(key)
        return entry

    async def resolve_by_thread(self, thread_id: Optional[int]) -> PlatformLookup:
        """Return the platform of the user behind a thread, or NotFound."""

        entry = await self.entry_by_thread(thread_id)
        if isinstance(entry, NotFound):
            return entry
        return entry.platform

    async def resolve_by_chat(self, platform: Platform, external_chat_id: str) -> EntryLookup:
        key = build_routing_key(platform, external_chat_id)
        try:
            entry = self._store.get_entry(platform, external_chat_id)
        except Exception:
            LOGGER.exception("Routing lookup failed for %s", key)
            return NotFound(key)
        if entry is None:
            return NotFound(key)
        return entry

    async def find_or_create(
        self,
        platform: Platform,
        external_chat_id: str,
        profile: Optional[SenderProfile] = None,
        provision: bool = True,
    ) -> RoutingEntry:
        """Return the entry for a user, creating it and its thread if needed.

        Concurrent first contacts for the same user serialize on a per-user
        lock, so they converge on one entry and at most one thread. When
        provisioning fails the entry is returned without a thread and the
        next event retries. Raises ProvisioningFailed when the entry itself
        cannot be stored.
        """

        key = build_routing_key(platform, external_chat_id)
        async with self._lock_for(platform, external_chat_id):
            try:
                entry = self._store.get_or_create_entry(platform, external_chat_id, profile)
            except Exception as exc:
                LOGGER.exception("Failed to store routing entry for %s", key)
                raise ProvisioningFailed(f"routing entry for {key} could not be stored") from exc
            if entry.thread_id is not None or not provision:
                return entry
            try:
                await self._provision(entry)
            except ProvisioningFailed:
                LOGGER.warning("Thread provisioning failed for %s, will retry on next event", key)
            return self._reload(entry)

    async def provision_thread(self, entry: RoutingEntry) -> int:
        """Create the staff thread for an entry unless it already has one."""

        if entry.thread_id is not None:
            return entry.thread_id
        async with self._lock_for(entry.platform, entry.external_chat_id):
            return await self._provision(entry)

    def _reload(self, entry: RoutingEntry) -> RoutingEntry:
        try:
            return self._store.get_entry_by_id(entry.id) or entry
        except Exception:
            LOGGER.exception("Failed to reload routing entry %s", entry.id)
            return entry

    async def _provision(self, entry: RoutingEntry) -> int:
        current = self._reload(entry)
        if current.thread_id is not None:
            return current.thread_id

        title = thread_title(current)
        # A thread created earlier whose id could not be stored is reused.
        thread_id = self._unsaved_threads.pop(current.id, None)
        if thread_id is None:
            try:
                thread_id = await self._threads.create_thread(self._staff_chat_id, title)
            except Exception as exc:
                LOGGER.exception("Failed to create thread %r for entry %s", title, current.id)
                raise ProvisioningFailed(f"thread creation failed for entry {current.id}") from exc

        try:
            updated = self._store.set_thread_id(current.id, thread_id)
        except Exception as exc:
            self._unsaved_threads[current.id] = thread_id
            LOGGER.exception("Failed to store thread %s for entry %s", thread_id, current.id)
            raise ProvisioningFailed(f"thread {thread_id} could not be stored for entry {current.id}") from exc

        if updated.thread_id != thread_id:
            # Another writer won the race; our topic stays orphaned.
            LOGGER.warning(
                "Entry %s already had thread %s, created thread %s is unused",
                current.id,
                updated.thread_id,
                thread_id,
            )
            return updated.thread_id
        LOGGER.info("Provisioned thread %s for %s", thread_id, thread_title(updated))

        if self._notifier is not None:
            try:
                await self._notifier.announce(updated)
            except Exception:
                LOGGER.exception("Failed to post contact card to thread %s", thread_id)
        return thread_id
