# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

"""Time-derived deficiency transitions applied by a scheduled job."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from aggregation.property_meta import recompute_property_meta
from backend.context import HandlerContext
from deficiencies.states import OVERDUE_ELIGIBLE_STATES
from shared import constants
from shared.types import DeficiencyState, StateHistoryEntry

logger = logging.getLogger(__name__)

# Shortest due window that asks for a progress note halfway through.
PROGRESS_NOTE_MIN_WINDOW = 5 * constants.SECONDS_PER_DAY


@dataclass
class OverdueReport:
    overdue: list[str] = field(default_factory=list)
    progress_required: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def next_time_state(deficiency: dict, now: float) -> Optional[DeficiencyState]:
    """The state a deficiency should move to at `now`, if any."""
    state = deficiency.get("state")
    due = deficiency.get("currentDueDate")
    if state not in OVERDUE_ELIGIBLE_STATES or not due:
        return None
    if due <= now:
        return DeficiencyState.OVERDUE

    start = deficiency.get("currentStartDate")
    if (
        state == DeficiencyState.PENDING
        and deficiency.get("willRequireProgressNote")
        and start
    ):
        window = due - start
        if window >= PROGRESS_NOTE_MIN_WINDOW and due - now < window / 2:
            return DeficiencyState.REQUIRES_PROGRESS_UPDATE
    return None


def sync_overdue_deficiencies(ctx: HandlerContext) -> OverdueReport:
    """
    Applies overdue and progress-update transitions to every eligible deficiency.

    Each transition appends a system entry to the state history. Properties of
    transitioned deficiencies are recomputed once at the end.
    """
    report = OverdueReport()
    now = ctx.now()
    touched_properties: set[str] = set()

    candidates = ctx.docs.query(
        constants.DEFICIENCIES_COLLECTION,
        [("state", "in", sorted(str(s) for s in OVERDUE_ELIGIBLE_STATES))],
    )
    for deficiency_id, deficiency in candidates:
        try:
            new_state = next_time_state(deficiency, now)
            if new_state is None:
                continue
            history_id = ctx.docs.new_id(constants.DEFICIENCIES_COLLECTION)
            entry = StateHistoryEntry(
                state=str(new_state), user=constants.SYSTEM_USER, created_at=now
            )
            ctx.docs.update(
                constants.DEFICIENCIES_COLLECTION,
                deficiency_id,
                {
                    "state": str(new_state),
                    "updatedAt": now,
                    f"stateHistory.{history_id}": entry.to_record(),
                },
            )
        except Exception as e:
            logger.exception("Overdue sync failed for deficiency %s: %s", deficiency_id, e)
            report.errors.append(deficiency_id)
            continue

        if new_state == DeficiencyState.OVERDUE:
            report.overdue.append(deficiency_id)
        else:
            report.progress_required.append(deficiency_id)
        if deficiency.get("property"):
            touched_properties.add(deficiency["property"])

    for property_id in sorted(touched_properties):
        try:
            recompute_property_meta(ctx, property_id)
        except Exception as e:
            logger.exception("Meta recompute failed for property %s: %s", property_id, e)
            report.errors.append(property_id)

    logger.info(
        "Overdue sync: %d overdue, %d require progress notes",
        len(report.overdue),
        len(report.progress_required),
    )
    return report
