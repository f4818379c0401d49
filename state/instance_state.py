"""
CASCADE - Instance state engine.
Selecting a table fans out the numeric totals, one group count per keyword and the
period lists, then commits the whole InstanceView in one step. A newer selection
makes any older in-flight load stale; stale results are dropped, never merged.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional, Sequence, Tuple

from state.mappings_state import MappingsStateEngine
from state.models import CohortRow, Instance, InstanceView, LoadStatus, Mapping, NumericField, User
from state.store import StateStore, guarded
from utils.mapping_discovery import WATERFALL_GROUP, MappingDiscovery
from utils.notifications import ToastEvents
from utils.query_executor import DOS_COLUMN, NUMERIC_FIELDS, POSTING_COLUMN, QueryExecutor

logger = logging.getLogger(__name__)

DOS_LIST = "DOS"
POSTING_LIST = "Posting"


@dataclass(frozen=True)
class InstanceSnapshot:
    instance: Optional[Instance] = None
    view: Optional[InstanceView] = None
    status: LoadStatus = LoadStatus.UNSET
    errors: Tuple[str, ...] = ()


def numeric_fields_from_totals(totals: Dict) -> Tuple[NumericField, ...]:
    """Seven fixed rows: three amounts then four counts, all included/divided/scheduled."""
    return tuple(
        NumericField(field_name=name, type=kind, total=totals.get(alias))
        for name, kind, alias, _, _ in NUMERIC_FIELDS
    )


def keyword_columns(keywords: Sequence[str], mappings: Sequence[Mapping]) -> Dict[str, Tuple[str, ...]]:
    """Sorted distinct non-empty Waterfall_Group values per keyword tab."""
    by_tab = {m.tab_name: m for m in mappings}
    columns = {}
    for keyword in keywords:
        mapping = by_tab.get(keyword)
        values = set()
        if mapping is not None:
            values = {str(r[WATERFALL_GROUP]) for r in mapping.data if r.get(WATERFALL_GROUP) not in (None, "")}
        columns[keyword] = tuple(sorted(values))
    return columns


class InstanceStateEngine(StateStore[InstanceSnapshot]):
    def __init__(
        self,
        executor: QueryExecutor,
        discovery: MappingDiscovery,
        mappings: MappingsStateEngine,
        toasts: Optional[ToastEvents] = None,
    ):
        super().__init__(InstanceSnapshot(), toasts)
        self.executor = executor
        self.discovery = discovery
        self.mappings = mappings
        self._generation = 0

    @property
    def view(self) -> Optional[InstanceView]:
        return self.state.view

    def _current_mappings(self, instance: Instance) -> Tuple[Mapping, ...]:
        state = self.mappings.state
        return state.mappings if state.instance == instance else ()

    async def _numeric_table_data(self, instance: Instance) -> Tuple[NumericField, ...]:
        totals = await self.executor.fetch_numeric_totals(instance)
        return numeric_fields_from_totals(totals)

    async def _cohort_row(self, instance: Instance, keyword: str, errors, is_current) -> CohortRow:
        count = await guarded(
            self.discovery.count_groups(instance, keyword),
            f"{keyword} group count on {instance.label()}",
            0, errors, self.toasts, is_current,
        )
        return CohortRow(waterfall_cohort_name=keyword, count=count)

    async def set_instance(self, instance: Instance) -> Optional[InstanceView]:
        """Load and commit the view for `instance`. Never raises.

        Returns the committed view, or None when a newer selection superseded this one.
        """
        self._generation += 1
        generation = self._generation
        self._commit(InstanceSnapshot(instance=instance, status=LoadStatus.LOADING))
        self.mappings.reset(instance)
        logger.info("Loading instance %s", instance.label())

        errors = []
        is_current = lambda: generation == self._generation
        keywords = await guarded(
            self.discovery.discover_keywords(instance),
            f"Keyword discovery on {instance.label()}",
            [], errors, self.toasts, is_current,
        )
        numeric, dos, posting, *cohorts = await asyncio.gather(
            guarded(self._numeric_table_data(instance), f"Numeric totals on {instance.label()}", (), errors, self.toasts, is_current),
            guarded(self.executor.fetch_distinct_values(instance, DOS_COLUMN), f"DOS periods on {instance.label()}", [], errors, self.toasts, is_current),
            guarded(self.executor.fetch_distinct_values(instance, POSTING_COLUMN), f"Posting periods on {instance.label()}", [], errors, self.toasts, is_current),
            *(self._cohort_row(instance, kw, errors, is_current) for kw in keywords),
        )

        if generation != self._generation:
            logger.warning("Discarding stale load of %s", instance.label())
            return None

        list_data = {DOS_LIST: tuple(dos), POSTING_LIST: tuple(posting)}
        list_data.update(keyword_columns(keywords, self._current_mappings(instance)))
        view = InstanceView(
            instance=instance,
            numeric_table_data=tuple(numeric),
            waterfall_cohorts_table_data=tuple(cohorts),
            waterfall_cohort_list_data=list_data,
        )
        status = LoadStatus.READY_WITH_ERRORS if errors else LoadStatus.READY
        self._commit(InstanceSnapshot(instance=instance, view=view, status=status, errors=tuple(errors)))
        logger.info(
            "Instance %s ready: %d keywords, %d errors", instance.label(), len(keywords), len(errors)
        )
        return view

    def recompute_cohort_lists(self) -> Optional[InstanceView]:
        """Rebuild the keyword columns of the pivot from in-memory mappings. No SQL."""
        state = self.state
        if state.view is None:
            return None
        view = state.view
        list_data = {DOS_LIST: view.waterfall_cohort_list_data.get(DOS_LIST, ()),
                     POSTING_LIST: view.waterfall_cohort_list_data.get(POSTING_LIST, ())}
        list_data.update(keyword_columns(view.keywords, self._current_mappings(view.instance)))
        view = replace(view, waterfall_cohort_list_data=list_data)
        self._commit(replace(state, view=view))
        return view

    async def upsync_current_mappings(self, user: Optional[User] = None):
        """Persist the edited tabs, then refresh the pivot's keyword columns.

        Returns (view, UpsyncResult). The pivot reflects in-memory edits even when saving fails.
        """
        result = await self.mappings.upsync_mappings(user)
        return self.recompute_cohort_lists(), result
