"""
CASCADE - Mappings state engine.
Owns the keyword tabs of the selected instance: loads them (saved edits first, then
fresh aggregation), applies cell edits copy-on-write, refreshes from the database and
persists tabs one by one.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from state.models import Instance, InstanceView, Mapping, User
from state.store import StateStore, guarded
from utils.api_client import ProjectsApi
from utils.cache_store import CacheStore
from utils.errors import CacheFailure, MappingsBusyError
from utils.mapping_discovery import WATERFALL_GROUP, MappingDiscovery
from utils.notifications import ToastEvents

logger = logging.getLogger(__name__)

SAVED_STATE = "mapping_state"


def saved_state_key(instance: Instance, tab_name: str) -> str:
    return instance.cache_key(SAVED_STATE, tab_name)


@dataclass(frozen=True)
class MappingsSnapshot:
    instance: Optional[Instance] = None
    mappings: Tuple[Mapping, ...] = ()
    refreshing: bool = False
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UpsyncResult:
    saved: Tuple[str, ...] = ()
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class MappingsStateEngine(StateStore[MappingsSnapshot]):
    def __init__(
        self,
        discovery: MappingDiscovery,
        saved_state: CacheStore,
        projects_api: Optional[ProjectsApi] = None,
        toasts: Optional[ToastEvents] = None,
    ):
        super().__init__(MappingsSnapshot(), toasts)
        self.discovery = discovery
        self.saved_state = saved_state
        self.projects_api = projects_api
        self._generation = 0

    def reset(self, instance: Optional[Instance] = None) -> None:
        """Drop all tabs (instance switch). In-flight loads for the old instance are discarded."""
        self._generation += 1
        self._commit(MappingsSnapshot(instance=instance))

    # ─── Loading ───────────────────────────────────────────────────────────

    async def _load_tab(self, instance: Instance, keyword: str, fresh: bool) -> Optional[Mapping]:
        if not fresh:
            saved = await self.saved_state.get(saved_state_key(instance, keyword))
            if saved is not None:
                logger.debug("Restored saved %s mapping for %s", keyword, instance.label())
                return Mapping.from_dict(saved)
        rows = await self.discovery.fetch_mapping_rows(instance, keyword, fresh=fresh)
        if not rows:
            return None
        return Mapping(tab_name=keyword, keyword=keyword, data=tuple(rows))

    async def _load(self, view: InstanceView, fresh: bool) -> Tuple[Mapping, ...]:
        instance = view.instance
        self._generation += 1
        generation = self._generation
        if self.state.instance == instance:
            self._commit(replace(self.state, refreshing=True))
        else:
            self._commit(MappingsSnapshot(instance=instance, refreshing=True))

        errors = []
        is_current = lambda: generation == self._generation
        try:
            results = await asyncio.gather(*(
                guarded(
                    self._load_tab(instance, keyword, fresh),
                    f"{keyword} mappings on {instance.label()}",
                    None, errors, self.toasts, is_current,
                )
                for keyword in view.keywords
            ))
            mappings = tuple(sorted((m for m in results if m is not None), key=lambda m: m.tab_name))
            if fresh:
                for mapping in mappings:
                    await self.saved_state.put(saved_state_key(instance, mapping.tab_name), mapping.to_dict())
        except BaseException:
            if generation == self._generation:
                self._commit(replace(self.state, refreshing=False))
            raise

        if generation != self._generation:
            logger.warning("Discarding stale mappings for %s", instance.label())
            return self.state.mappings
        self._commit(MappingsSnapshot(instance=instance, mappings=mappings, errors=tuple(errors)))
        logger.info("Loaded %d mapping tabs for %s", len(mappings), instance.label())
        return mappings

    async def set_mappings_state(self, view: InstanceView) -> Tuple[Mapping, ...]:
        """Load tabs for the view's keywords unless they are already loaded (idempotent)."""
        state = self.state
        if state.instance == view.instance and (state.mappings or state.refreshing):
            logger.debug("Mappings for %s already loaded", view.instance.label())
            return state.mappings
        return await self._load(view, fresh=False)

    async def refresh_mappings_state(self, view: InstanceView) -> Tuple[Mapping, ...]:
        """Re-fetch every tab from the database, discarding unsaved edits and saved state."""
        return await self._load(view, fresh=True)

    # ─── Editing ───────────────────────────────────────────────────────────

    def add_mapping(self, mapping: Mapping) -> None:
        """Insert or replace a tab by name."""
        others = tuple(m for m in self.state.mappings if m.tab_name != mapping.tab_name)
        mappings = tuple(sorted(others + (mapping,), key=lambda m: m.tab_name))
        self._commit(replace(self.state, mappings=mappings))

    def modify_waterfall_group(self, mapping_index: int, row_index: int, value: Any) -> Mapping:
        """Set Waterfall_Group of one row. Only that row and its tab are copied."""
        state = self.state
        if state.refreshing:
            raise MappingsBusyError("Mappings are being refreshed; edit again once loading finishes")
        if not 0 <= mapping_index < len(state.mappings):
            raise IndexError(f"No mapping tab at index {mapping_index}")
        mapping = state.mappings[mapping_index]
        if not 0 <= row_index < len(mapping.data):
            raise IndexError(f"No row {row_index} in {mapping.tab_name} mappings")

        row = {**mapping.data[row_index], WATERFALL_GROUP: value}
        updated = replace(mapping, data=mapping.data[:row_index] + (row,) + mapping.data[row_index + 1:])
        mappings = state.mappings[:mapping_index] + (updated,) + state.mappings[mapping_index + 1:]
        self._commit(replace(state, mappings=mappings))
        return updated

    # ─── Persistence ───────────────────────────────────────────────────────

    async def _save_tab(self, instance: Instance, mapping: Mapping, user: Optional[User]) -> None:
        remote = self.projects_api is not None and user is not None
        if remote:
            await self.projects_api.save_mapping(user.id, instance, mapping)
        stored = await self.saved_state.put(saved_state_key(instance, mapping.tab_name), mapping.to_dict())
        if not stored and not remote:
            raise CacheFailure("local save failed")

    async def upsync_mappings(self, user: Optional[User] = None) -> UpsyncResult:
        """Persist every tab independently. A failed tab is reported; the others still save."""
        state = self.state
        if state.instance is None or not state.mappings:
            return UpsyncResult()

        outcomes = await asyncio.gather(
            *(self._save_tab(state.instance, m, user) for m in state.mappings),
            return_exceptions=True,
        )
        saved, failed = [], {}
        for mapping, outcome in zip(state.mappings, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Saving %s mappings for %s failed: %s", mapping.tab_name, state.instance.label(), outcome)
                failed[mapping.tab_name] = str(outcome)
                self.toasts.emit(f"Could not save {mapping.tab_name} mappings: {outcome}", "error")
            else:
                saved.append(mapping.tab_name)
        if saved:
            self.toasts.emit(f"Saved {len(saved)} mapping tab(s)", "success")
        return UpsyncResult(saved=tuple(saved), failed=failed)
