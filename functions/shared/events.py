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

"""Change events delivered to handlers for a single source record."""

from dataclasses import dataclass, field
from typing import Optional, Union


@dataclass(frozen=True)
class Created:
    doc_id: str
    after: dict
    params: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Updated:
    doc_id: str
    before: dict
    after: dict
    params: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Deleted:
    doc_id: str
    before: dict
    params: dict = field(default_factory=dict)


ChangeEvent = Union[Created, Updated, Deleted]


def from_snapshots(
    doc_id: str,
    before: Optional[dict],
    after: Optional[dict],
    params: Optional[dict] = None,
) -> Optional[ChangeEvent]:
    """Tags a before/after pair. Returns None when neither side exists."""
    params = params or {}
    if before is None and after is None:
        return None
    if before is None:
        return Created(doc_id=doc_id, after=after, params=params)
    if after is None:
        return Deleted(doc_id=doc_id, before=before, params=params)
    return Updated(doc_id=doc_id, before=before, after=after, params=params)


def before_of(event: ChangeEvent) -> Optional[dict]:
    return None if isinstance(event, Created) else event.before


def after_of(event: ChangeEvent) -> Optional[dict]:
    return None if isinstance(event, Deleted) else event.after
