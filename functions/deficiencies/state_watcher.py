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

import logging
from typing import Optional

from aggregation.property_meta import recompute_property_meta
from backend.context import HandlerContext
from backend.queue import DeficiencyEvent
from deficiencies.states import category_of
from integrations.notifications import create_state_change_notification
from shared.events import ChangeEvent, Updated
from shared.types import StateHistoryEntry

logger = logging.getLogger(__name__)


def latest_history_entry(deficiency: dict) -> Optional[StateHistoryEntry]:
    entries = [
        StateHistoryEntry.from_record(entry)
        for entry in (deficiency.get("stateHistory") or {}).values()
        if isinstance(entry, dict) and entry.get("state")
    ]
    if not entries:
        return None
    return max(entries, key=lambda entry: entry.created_at or 0)


def on_deficiency_state_update(ctx: HandlerContext, event: ChangeEvent) -> bool:
    """
    Reacts to a deficiency's `state` changing.

    Recomputes the property's counters when the state category moved, writes a
    notification, and queues the transition for the card integration worker.
    Returns True when a transition was handled.
    """
    if not isinstance(event, Updated):
        return False
    previous = event.before.get("state")
    current = event.after.get("state")
    if previous == current or not current:
        return False

    property_id = event.after.get("property")
    if not property_id:
        logger.warning("Deficiency %s has no property; ignoring state change", event.doc_id)
        return False

    if category_of(previous) != category_of(current):
        recompute_property_meta(ctx, property_id)

    latest = latest_history_entry(event.after)
    create_state_change_notification(
        ctx,
        property_id=property_id,
        deficiency_id=event.doc_id,
        deficiency=event.after,
        previous_state=previous or "",
        current_state=current,
        creator_id=latest.user if latest else None,
    )

    topic = DeficiencyEvent.state_change(property_id, event.doc_id, current).topic
    ctx.queue.publish(topic)
    logger.info(
        "Deficiency %s moved %s -> %s", event.doc_id, previous, current
    )
    return True
