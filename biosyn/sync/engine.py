"""
Profile synchronization engine.

Keeps in-memory state, the local cache and the remote profile store
consistent without ever blocking the caller on the remote.

Consistency model (local-first):
- The local cache is always valid state for the running session.
- The remote store is a best-effort mirror. Remote failures are logged
  and swallowed; remote writes while offline are skipped, and the next
  online transition schedules a flush so the mirror catches up.

Protocol:
- Every tracked mutation while authenticated (re)starts one debounce
  window; the flush writes the whole snapshot.
- login(): the remote profile, when present, supersedes local identity
  and history. Chat histories merge without dropping local messages.
  An unknown user is registered immediately, outside the debounce.
- No remote write is issued while the remote record is unknown (offline
  sign-in, failed fetch). The first write after that fetches and merges
  the remote profile, so a full-document upsert never drops remote
  history.
- logout(): every cache key is removed and in-memory state is dropped.
  No remote delete is issued.
"""

from __future__ import annotations

import datetime
from dataclasses import replace
from typing import Any, Sequence

from biosyn.constants import SYNC_DEBOUNCE_MS
from biosyn.errors import RemoteStoreError
from biosyn.observability.logger import log_event, now_ms
from biosyn.perception.report import HealthPerception
from biosyn.storage.cache import CacheKey, LocalPersistenceCache
from biosyn.sync.connectivity import ConnectivityMonitor
from biosyn.sync.debounce import SingleFlightDebouncer
from biosyn.sync.profile import (
    ChatMessage,
    HealthHistoryItem,
    LocalProfile,
    SettingsSnapshot,
    UserIdentity,
    UserProfile,
    UserSettings,
)
from biosyn.sync.remote import RemoteProfileStore

_DEFAULT_PERCEPTION = "General Assessment"


def merge_chat_histories(
    local: Sequence[ChatMessage],
    remote: Sequence[ChatMessage],
) -> list[ChatMessage]:
    """
    Login merge for chat history.

    - Remote empty: keep local.
    - Local empty: adopt remote.
    - Both non-empty: remote first, then local messages the remote does
      not already contain, in local order.
    """
    if not remote:
        return list(local)
    if not local:
        return list(remote)
    merged = list(remote)
    for message in local:
        if message not in merged:
            merged.append(message)
    return merged


def merge_health_histories(
    local: Sequence[HealthHistoryItem],
    remote: Sequence[HealthHistoryItem],
) -> list[HealthHistoryItem]:
    """Local items the remote lacks (recorded offline) first, then the remote ones."""
    remote_ids = {item.id for item in remote}
    return [item for item in local if item.id not in remote_ids] + list(remote)


def _adopt_remote(local: UserProfile, remote: UserProfile) -> UserProfile:
    """Remote document wins, keeping local history items it does not have."""
    return replace(
        remote,
        health_history=merge_health_histories(local.health_history, remote.health_history),
    )


class ProfileSyncEngine:
    """Sole writer of the sync-tracked cache keys."""

    def __init__(
        self,
        cache: LocalPersistenceCache,
        remote: RemoteProfileStore,
        connectivity: ConnectivityMonitor,
        *,
        debounce_ms: int = SYNC_DEBOUNCE_MS,
    ) -> None:
        self._cache = cache
        self._remote = remote
        self._connectivity = connectivity
        self._profile = LocalProfile()
        # False until the remote record for the signed-in user has been fetched.
        self._remote_known = False
        self._debouncer = SingleFlightDebouncer(
            debounce_ms / 1000, self._flush, name="profile_sync"
        )
        self._unsubscribe = connectivity.subscribe(self._on_connectivity)
        self.flush_count = 0

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def profile(self) -> LocalProfile:
        return self._profile

    @property
    def user(self) -> UserProfile | None:
        return self._profile.user

    @property
    def authenticated(self) -> bool:
        return self._profile.authenticated

    @property
    def report(self) -> dict[str, Any] | None:
        return self._profile.report

    @property
    def chat_history(self) -> list[ChatMessage]:
        return list(self._profile.chat_history)

    @property
    def settings(self) -> SettingsSnapshot:
        return self._profile.settings

    @property
    def is_syncing(self) -> bool:
        return self._debouncer.pending or self._debouncer.in_flight

    # ------------------------------------------------------------------
    # Startup / identity
    # ------------------------------------------------------------------

    async def restore(self) -> None:
        """
        Load state from the cache at startup.

        A cached identity is refreshed from the remote when online; any
        remote failure keeps the cached identity.
        """
        raw_user = self._cache.get(CacheKey.IDENTITY)
        if raw_user is not None:
            user = self._decode(CacheKey.IDENTITY, raw_user, UserProfile.from_dict)
            if user is not None:
                self._profile.user = await self._refresh_user(user)

        report = self._cache.get(CacheKey.LAST_REPORT)
        if report is not None:
            self._profile.report = report
            if isinstance(report.get("language"), str):
                self._profile.settings = replace(self._profile.settings, language=report["language"])

        raw_chat = self._cache.get(CacheKey.CHAT_HISTORY)
        if raw_chat is not None:
            chat = self._decode(
                CacheKey.CHAT_HISTORY, raw_chat,
                lambda items: [ChatMessage.from_dict(m) for m in items],
            )
            if chat is not None:
                self._profile.chat_history = chat

        raw_settings = self._cache.get(CacheKey.SETTINGS)
        if raw_settings is not None:
            settings = self._decode(CacheKey.SETTINGS, raw_settings, SettingsSnapshot.from_dict)
            if settings is not None:
                self._profile.settings = settings

        log_event({
            "event_type": "PROFILE_RESTORED",
            "authenticated": self.authenticated,
            "has_report": self._profile.report is not None,
            "chat_messages": len(self._profile.chat_history),
        })

    async def login(self, identity: UserIdentity) -> UserProfile:
        """
        Sign in and reconcile with the remote profile.

        Unknown users are registered with an immediate POST. When the
        remote cannot be reached the identity is used as-is; the first
        remote write afterwards merges with the remote record instead of
        overwriting it.
        """
        existing: UserProfile | None = None
        remote_known = False

        if self._connectivity.is_online:
            try:
                existing = await self._remote.get_profile(identity.email)
                remote_known = True
            except RemoteStoreError as e:
                self._log_remote_failure("login_fetch", e)
        else:
            self._log_remote_skip("login_fetch")

        if existing is not None:
            user = existing
            self._profile.chat_history = merge_chat_histories(
                self._profile.chat_history, existing.chat_history
            )
        else:
            user = UserProfile.from_identity(identity)

        self._profile.user = user
        self._remote_known = remote_known
        self._cache.set(CacheKey.IDENTITY, user.to_dict())

        log_event({
            "event_type": "PROFILE_LOGIN",
            "email": user.email,
            "remote_profile": existing is not None,
            "chat_messages": len(self._profile.chat_history),
        })

        if existing is None and remote_known:
            await self._post_remote("register")

        self._touch()
        return user

    async def logout(self) -> None:
        """Clear every cache key and drop in-memory state."""
        self._debouncer.cancel()
        await self._debouncer.wait_idle()

        self._cache.clear()
        email = self._profile.user.email if self._profile.user else None
        self._profile = LocalProfile()
        self._remote_known = False

        log_event({
            "event_type": "PROFILE_LOGOUT",
            "email": email,
        })

    async def update_user(self, user: UserProfile) -> None:
        """Replace the user document and write it through immediately."""
        self._profile.user = user
        self._cache.set(CacheKey.IDENTITY, user.to_dict())
        await self._post_remote("update_user")

    async def record_analysis(
        self,
        symptoms: str,
        report: HealthPerception,
    ) -> HealthHistoryItem | None:
        """
        Store a fresh report and, when signed in, prepend it to the
        health history (written immediately).
        """
        self.set_report(report.to_dict())

        user = self._profile.user
        if user is None:
            return None

        item = HealthHistoryItem(
            id=str(now_ms()),
            date=datetime.date.today().isoformat(),
            symptoms=symptoms,
            perception=report.potential_causes[0] if report.potential_causes else _DEFAULT_PERCEPTION,
            severity=report.severity.value,
            full_report=report.to_dict(),
        )
        await self.update_user(replace(user, health_history=[item, *user.health_history]))
        return item

    # ------------------------------------------------------------------
    # Tracked mutations (debounced)
    # ------------------------------------------------------------------

    def set_report(self, report: dict[str, Any] | None) -> None:
        self._profile.report = report
        if report is not None and isinstance(report.get("language"), str):
            self._profile.settings = replace(self._profile.settings, language=report["language"])
        self._touch()

    def set_chat_history(self, messages: Sequence[ChatMessage]) -> None:
        self._profile.chat_history = list(messages)
        self._touch()

    def append_chat_message(self, message: ChatMessage) -> None:
        self._profile.chat_history = [*self._profile.chat_history, message]
        self._touch()

    def set_language(self, language: str) -> None:
        self._profile.settings = replace(self._profile.settings, language=language)
        self._touch()

    def accept_disclaimer(self) -> None:
        self._profile.settings = replace(self._profile.settings, consented=True)
        self._touch()

    def finish_onboarding(self) -> None:
        self._profile.settings = replace(self._profile.settings, onboarded=True)
        self._touch()

    def update_settings(self, user_settings: UserSettings) -> None:
        """Replace user settings; the default language becomes the active one."""
        self._profile.settings = replace(
            self._profile.settings,
            user_settings=user_settings,
            language=user_settings.default_language,
        )
        self._touch()

    # ------------------------------------------------------------------
    # Flush control
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Flush now instead of waiting for the quiet period."""
        await self._debouncer.flush_now()

    async def wait_idle(self) -> None:
        await self._debouncer.wait_idle()

    async def close(self) -> None:
        """Flush anything pending and detach from connectivity."""
        self._unsubscribe()
        if self._debouncer.pending:
            await self._debouncer.flush_now()
        await self._debouncer.wait_idle()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _touch(self) -> None:
        if self.authenticated:
            self._debouncer.trigger()

    def _on_connectivity(self, online: bool) -> None:
        if online and self.authenticated:
            self._debouncer.trigger()

    async def _flush(self) -> None:
        profile = self._profile
        self.flush_count += 1

        self._cache.set(CacheKey.SETTINGS, profile.settings.to_dict())

        if profile.report is not None:
            self._cache.set(CacheKey.LAST_REPORT, profile.report)
        else:
            self._cache.remove(CacheKey.LAST_REPORT)

        if profile.chat_history:
            self._cache.set(CacheKey.CHAT_HISTORY, [m.to_dict() for m in profile.chat_history])
        else:
            self._cache.remove(CacheKey.CHAT_HISTORY)

        log_event({
            "event_type": "PROFILE_SYNC_FLUSHED",
            "flush": self.flush_count,
            "authenticated": profile.user is not None,
        })

        if profile.user is not None:
            await self._post_remote("flush")

    async def _post_remote(self, reason: str) -> None:
        if self._profile.user is None:
            return
        if not self._connectivity.is_online:
            self._log_remote_skip(reason)
            return
        if not self._remote_known and not await self._reconcile(reason):
            return

        user = self._profile.user
        if user is None:
            return
        document = user.with_chat(self._profile.chat_history)
        try:
            await self._remote.save_profile(document)
        except RemoteStoreError as e:
            self._log_remote_failure(reason, e)
            return

        log_event({
            "event_type": "PROFILE_SYNC_REMOTE_SAVED",
            "reason": reason,
            "email": user.email,
        })

    async def _refresh_user(self, cached: UserProfile) -> UserProfile:
        if not self._connectivity.is_online:
            self._log_remote_skip("restore_fetch")
            return cached
        try:
            remote = await self._remote.get_profile(cached.email)
        except RemoteStoreError as e:
            self._log_remote_failure("restore_fetch", e)
            return cached
        self._remote_known = True
        if remote is None:
            return cached
        user = _adopt_remote(cached, remote)
        self._cache.set(CacheKey.IDENTITY, user.to_dict())
        return user

    async def _reconcile(self, reason: str) -> bool:
        """
        Fetch and merge the remote record before the first write for a user
        signed in without it. Returns False when the write must be skipped.
        """
        local = self._profile.user
        try:
            remote = await self._remote.get_profile(local.email)
        except RemoteStoreError as e:
            self._log_remote_failure(f"{reason}_reconcile", e)
            return False

        current = self._profile.user
        if current is None or current.email != local.email:
            return False

        self._remote_known = True
        if remote is not None:
            user = _adopt_remote(current, remote)
            self._profile.user = user
            self._profile.chat_history = merge_chat_histories(
                self._profile.chat_history, remote.chat_history
            )
            self._cache.set(CacheKey.IDENTITY, user.to_dict())
            if self._profile.chat_history:
                self._cache.set(
                    CacheKey.CHAT_HISTORY, [m.to_dict() for m in self._profile.chat_history]
                )

        log_event({
            "event_type": "PROFILE_SYNC_RECONCILED",
            "reason": reason,
            "email": local.email,
            "remote_profile": remote is not None,
        })
        return True

    def _decode(self, key: CacheKey, raw: Any, decoder):
        try:
            return decoder(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            log_event({
                "event_type": "CACHE_ENTRY_CORRUPT",
                "key": key.value,
                "reason": f"decode_failed: {e!r}",
            })
            self._cache.remove(key)
            return None

    @staticmethod
    def _log_remote_failure(reason: str, error: Exception) -> None:
        log_event({
            "event_type": "PROFILE_SYNC_REMOTE_FAILED",
            "reason": reason,
            "error": repr(error),
        })

    @staticmethod
    def _log_remote_skip(reason: str) -> None:
        log_event({
            "event_type": "PROFILE_SYNC_REMOTE_SKIPPED",
            "reason": reason,
            "offline": True,
        })
