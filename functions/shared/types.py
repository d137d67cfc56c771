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

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Optional

from dacite import Config, from_dict

from shared.json_utils import convert_keys


class DeficiencyState(StrEnum):
    REQUIRES_ACTION = "requires-action"
    GO_BACK = "go-back"
    PENDING = "pending"
    REQUIRES_PROGRESS_UPDATE = "requires-progress-update"
    OVERDUE = "overdue"
    DEFERRED = "deferred"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    GO_BACK_SELECTED = "go-back-selected"
    CLOSED = "closed"


class StateCategory(StrEnum):
    REQUIRES_ACTION = "requires_action"
    FOLLOW_UP = "follow_up"
    CLOSED = "closed"
    IN_PROGRESS = "in_progress"


@dataclass
class StateHistoryEntry:
    """One entry of a deficiency's `stateHistory` map."""

    state: str
    user: Optional[str] = None
    created_at: float = 0

    @classmethod
    def from_record(cls, data: dict) -> "StateHistoryEntry":
        return from_dict(
            data_class=cls,
            data=convert_keys(data, "camel_to_snake"),
            config=Config(check_types=False),
        )

    def to_record(self) -> dict:
        return convert_keys(asdict(self), "snake_to_camel")


@dataclass
class Inspection:
    """Typed view of an inspection document.

    The template is kept as the raw camelCase record since its item and
    section maps are keyed by ids.
    """

    id: str
    property_id: Optional[str] = None
    template_name: Optional[str] = None
    inspection_completed: bool = False
    creation_date: float = 0
    updated_last_date: float = 0
    score: Any = None
    template: dict = field(default_factory=dict)

    @classmethod
    def from_record(cls, doc_id: str, data: dict) -> "Inspection":
        payload = {k: v for k, v in data.items() if k != "template"}
        payload = convert_keys(payload, "camel_to_snake")
        payload["property_id"] = payload.pop("property", None)
        payload["id"] = doc_id
        payload["template"] = data.get("template") or {}
        return from_dict(data_class=cls, data=payload, config=Config(check_types=False))

    @property
    def is_completed(self) -> bool:
        return self.inspection_completed is True

    @property
    def tracks_deficiencies(self) -> bool:
        return self.template.get("trackDeficientItems") is True


@dataclass
class PropertyMeta:
    """Counters derived from a property's completed inspections."""

    num_of_inspections: int = 0
    last_inspection_score: Optional[float] = None
    last_inspection_date: Optional[float] = None
    num_of_deficient_items: int = 0
    num_of_required_actions_for_deficient_items: int = 0
    num_of_follow_up_actions_for_deficient_items: int = 0

    def to_record(self) -> dict:
        return convert_keys(asdict(self), "snake_to_camel")
