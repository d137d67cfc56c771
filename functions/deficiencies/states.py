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

from typing import Optional

from shared.types import DeficiencyState, StateCategory

INITIAL_STATE = DeficiencyState.REQUIRES_ACTION

REQUIRED_ACTION_STATES = frozenset(
    {
        DeficiencyState.REQUIRES_ACTION,
        DeficiencyState.GO_BACK,
        DeficiencyState.REQUIRES_PROGRESS_UPDATE,
        DeficiencyState.OVERDUE,
    }
)
FOLLOW_UP_ACTION_STATES = frozenset(
    {DeficiencyState.COMPLETED, DeficiencyState.INCOMPLETE}
)
# States the scheduled job may move to overdue once the due date passes.
OVERDUE_ELIGIBLE_STATES = frozenset(
    {DeficiencyState.PENDING, DeficiencyState.REQUIRES_PROGRESS_UPDATE}
)

# Selection indices of each main input type that flag an item deficient.
DEFICIENT_LIST_ELIGIBLE = {
    "twoactions_checkmarkx": (False, True),
    "twoactions_thumbs": (False, True),
    "threeactions_checkmarkexclamationx": (False, True, True),
    "threeactions_abc": (False, True, True),
    "fiveactions_onetofive": (True, True, False, False, False),
    "oneaction_notes": (False,),
}


def parse_state(value: Optional[str]) -> Optional[DeficiencyState]:
    try:
        return DeficiencyState(value)
    except ValueError:
        return None


def category_of(state: Optional[str]) -> Optional[StateCategory]:
    """Coarse category of a lifecycle state; None for unknown states."""
    parsed = parse_state(state)
    if parsed is None:
        return None
    if parsed in REQUIRED_ACTION_STATES:
        return StateCategory.REQUIRES_ACTION
    if parsed in FOLLOW_UP_ACTION_STATES:
        return StateCategory.FOLLOW_UP
    if parsed == DeficiencyState.CLOSED:
        return StateCategory.CLOSED
    return StateCategory.IN_PROGRESS


def is_deficient_selection(item: dict, template: Optional[dict] = None) -> bool:
    """True when the item's main input selection is a deficient answer.

    A template may override the eligibility table with its own
    `deficientListEligible` map.
    """
    table = (template or {}).get("deficientListEligible") or DEFICIENT_LIST_ELIGIBLE
    eligible = table.get((item.get("mainInputType") or "").lower())
    selection = item.get("mainInputSelection")
    if not eligible or isinstance(selection, bool) or not isinstance(selection, int):
        return False
    if selection < 0 or selection >= len(eligible):
        return False
    return bool(eligible[selection])
