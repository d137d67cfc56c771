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

"""
Recomputes the counters a property carries about its completed inspections.

Counters are always derived from a full scan of the property's inspections and
deficiencies, never incremented in place, so overlapping or repeated
recomputations converge on the same values.
"""

import logging
from typing import Iterable, Optional

from google.cloud.firestore_v1 import DELETE_FIELD

from backend.context import HandlerContext
from deficiencies.derive import deficient_item_ids
from deficiencies.states import INITIAL_STATE, category_of
from proxies.projector import sanitize_score
from shared import constants
from shared.types import DeficiencyState, Inspection, PropertyMeta, StateCategory

logger = logging.getLogger(__name__)

# (inspection id, item id) -> current deficiency state
DeficiencyStates = dict[tuple[str, str], str]


def latest_completed(inspections: Iterable[Inspection]) -> Optional[Inspection]:
    """Most recent completed inspection by creation date, ties broken by id."""
    completed = [i for i in inspections if i.is_completed]
    if not completed:
        return None
    return max(completed, key=lambda i: (i.creation_date or 0, i.id))


def compute_property_meta(
    inspections: list[Inspection], deficiency_states: DeficiencyStates
) -> PropertyMeta:
    completed = [i for i in inspections if i.is_completed]
    meta = PropertyMeta(num_of_inspections=len(completed))

    latest = latest_completed(completed)
    if latest:
        meta.last_inspection_score = sanitize_score(latest.score)
        meta.last_inspection_date = latest.creation_date

    for inspection in completed:
        if not inspection.tracks_deficiencies:
            continue
        for item_id in deficient_item_ids(inspection.template):
            state = deficiency_states.get((inspection.id, item_id), INITIAL_STATE)
            if state == DeficiencyState.CLOSED:
                continue
            meta.num_of_deficient_items += 1
            category = category_of(state)
            if category == StateCategory.REQUIRES_ACTION:
                meta.num_of_required_actions_for_deficient_items += 1
            elif category == StateCategory.FOLLOW_UP:
                meta.num_of_follow_up_actions_for_deficient_items += 1
    return meta


def meta_updates(property_record: dict, meta: PropertyMeta) -> dict:
    """
    Field updates needed to bring a property in line with `meta`.

    Only differing fields are written. Counters are always present, so an
    absent counter is written as 0; the last-inspection fields are removed
    when there is no completed inspection.
    """
    updates = {}
    for name, value in meta.to_record().items():
        current = property_record.get(name)
        if value is None:
            if current is not None:
                updates[name] = DELETE_FIELD
        elif current != value:
            updates[name] = value
    return updates


def recompute_property_meta(
    ctx: HandlerContext, property_id: str
) -> Optional[PropertyMeta]:
    """
    Recomputes and stores a property's inspection and deficiency counters.

    Returns the computed counters, or None when the property does not exist.
    """
    property_record = ctx.docs.get(constants.PROPERTIES_COLLECTION, property_id)
    if property_record is None:
        logger.warning("Property %s not found; skipping meta update", property_id)
        return None

    inspections = [
        Inspection.from_record(inspection_id, data)
        for inspection_id, data in ctx.docs.query(
            constants.INSPECTIONS_COLLECTION, [("property", "==", property_id)]
        )
    ]
    deficiency_states = {
        (data.get("inspection"), data.get("item")): data.get("state")
        for _, data in ctx.docs.query(
            constants.DEFICIENCIES_COLLECTION, [("property", "==", property_id)]
        )
    }

    meta = compute_property_meta(inspections, deficiency_states)
    updates = meta_updates(property_record, meta)
    if updates:
        ctx.docs.update(constants.PROPERTIES_COLLECTION, property_id, updates)
        logger.info(
            "Property %s: updated %s", property_id, ", ".join(sorted(updates))
        )
    return meta
