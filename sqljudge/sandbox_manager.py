"""
Sandbox Session Registry
========================
Maps a grading session (question + seed group) to its live SQLite sandbox and
keeps the named seed scripts sessions are created from.

Every mutation for a session runs under that session's asyncio lock, so at
most one active sandbox exists per session while unrelated sessions proceed in
parallel. Blocking SQLite work is pushed to worker threads.
"""

import asyncio
import uuid
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

from .sqlite_sandbox import SqliteSandbox

logger = logging.getLogger(__name__)

DEFAULT_GROUP_ID = "default"


@dataclass(frozen=True)
class SessionKey:
    question_id: str
    group_id: str = DEFAULT_GROUP_ID

    @classmethod
    def build(cls, question_id, group_id: Optional[str] = None,
              default_group_id: str = DEFAULT_GROUP_ID) -> "SessionKey":
        return cls(question_id=str(question_id), group_id=str(group_id or default_group_id))

    def __str__(self) -> str:
        return f"{self.question_id}:{self.group_id}"


class SandboxRegistry:
    """Manager for sandbox instances and seed groups"""

    def __init__(self, base_seed_sql: str = "", scratch_dir: str = "tmp",
                 default_group_id: str = DEFAULT_GROUP_ID):
        self.base_seed_sql = base_seed_sql
        self.scratch_dir = scratch_dir
        self.default_group_id = default_group_id

        self._sessions: Dict[SessionKey, SqliteSandbox] = {}
        self._seed_store: Dict[str, str] = {}
        self._locks: "weakref.WeakValueDictionary[SessionKey, asyncio.Lock]" = weakref.WeakValueDictionary()

    def key(self, question_id, group_id: Optional[str] = None) -> SessionKey:
        return SessionKey.build(question_id, group_id, self.default_group_id)

    def _lock_for(self, key: SessionKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ==================== SEED GROUPS ====================

    def create_seed(self, seed_sql: str, group_id: Optional[str] = None) -> str:
        """Register a seed script for a group, generating the group id when absent"""
        group_id = str(group_id) if group_id else uuid.uuid4().hex
        replaced = group_id in self._seed_store
        self._seed_store[group_id] = seed_sql
        logger.info(f"{'Replaced' if replaced else 'Registered'} seed for group {group_id}")
        return group_id

    def get_seed(self, group_id: str) -> Optional[str]:
        return self._seed_store.get(group_id)

    def resolve_seed(self, key: SessionKey, seed_sql: Optional[str] = None) -> str:
        """Explicit seed, then the group's registered seed, then the baseline seed"""
        if seed_sql is not None:
            return seed_sql
        group_seed = self.get_seed(key.group_id)
        if group_seed is not None:
            return group_seed
        return self.base_seed_sql

    # ==================== SANDBOX LIFECYCLE ====================

    def get_sandbox(self, key: SessionKey) -> Optional[SqliteSandbox]:
        return self._sessions.get(key)

    def remove_sandbox(self, key: SessionKey):
        """Unregister without destroying; the caller destroys first"""
        self._sessions.pop(key, None)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    async def create_sandbox(self, key: SessionKey, seed_sql: Optional[str] = None) -> SqliteSandbox:
        """Replace whatever sandbox the session has with a freshly seeded one"""
        async with self._lock_for(key):
            return await self._install(key, seed_sql)

    async def destroy_sandbox(self, key: SessionKey) -> bool:
        """Destroy and unregister the session's sandbox; False when there was none"""
        async with self._lock_for(key):
            sandbox = self._sessions.get(key)
            if sandbox is None:
                return False
            try:
                await asyncio.to_thread(sandbox.destroy)
            finally:
                self.remove_sandbox(key)
            return True

    @asynccontextmanager
    async def session(self, key: SessionKey, discard: bool = False) -> AsyncIterator[SqliteSandbox]:
        """
        Hold the session's lock and yield its sandbox, creating it when missing.

        Args:
            key: Session to operate on
            discard: Destroy and unregister the sandbox before releasing the lock
        """
        async with self._lock_for(key):
            sandbox = self._sessions.get(key)
            if sandbox is None or not sandbox.active:
                sandbox = await self._install(key, None)

            try:
                yield sandbox
            finally:
                if discard:
                    try:
                        await asyncio.to_thread(sandbox.destroy)
                    finally:
                        self.remove_sandbox(key)

    async def _install(self, key: SessionKey, seed_sql: Optional[str]) -> SqliteSandbox:
        # Caller holds the session lock
        existing = self._sessions.pop(key, None)
        if existing is not None:
            try:
                await asyncio.to_thread(existing.destroy)
            except Exception as e:
                logger.warning(f"Failed to destroy previous sandbox for session {key}: {e}")

        sandbox = SqliteSandbox(
            question_id=key.question_id,
            seed_sql=self.resolve_seed(key, seed_sql),
            scratch_dir=self.scratch_dir,
            group_id=key.group_id,
        )
        await asyncio.to_thread(sandbox.init)

        self._sessions[key] = sandbox
        logger.info(f"Installed sandbox for session {key}")
        return sandbox

    async def destroy_all(self):
        """Destroy every registered sandbox (application shutdown)"""
        for key in list(self._sessions):
            try:
                await self.destroy_sandbox(key)
            except Exception as e:
                logger.error(f"Failed to destroy sandbox for session {key}: {e}")
        logger.info("Destroyed all sandboxes")
