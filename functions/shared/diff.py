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

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional


@dataclass
class Diff:
    """Field level difference between two records.

    `added` and `changed` hold the new values, `removed` the old ones.
    """

    added: dict = field(default_factory=dict)
    removed: dict = field(default_factory=dict)
    changed: dict = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.changed)

    @property
    def fields(self) -> set[str]:
        return set(self.added) | set(self.removed) | set(self.changed)


def diff_fields(
    before: Optional[dict],
    after: Optional[dict],
    fields: Optional[Iterable[str]] = None,
) -> Diff:
    """Compares `before` and `after` on `fields` (default: every key of both).

    A field holding None is treated as absent.
    """
    before = before or {}
    after = after or {}
    if fields is None:
        fields = sorted(set(before) | set(after))

    result = Diff()
    for name in fields:
        old: Any = before.get(name)
        new: Any = after.get(name)
        if old is None and new is None:
            continue
        if old is None:
            result.added[name] = new
        elif new is None:
            result.removed[name] = old
        elif old != new:
            result.changed[name] = new
    return result


def diff_keys(before: Any, after: Any) -> tuple[set[str], set[str]]:
    """Returns (added, removed) keys of two membership maps or lists."""
    old = _member_keys(before)
    new = _member_keys(after)
    return new - old, old - new


def _member_keys(value: Any) -> set[str]:
    if isinstance(value, dict):
        return {k for k, v in value.items() if v}
    if isinstance(value, (list, tuple, set)):
        return {v for v in value if isinstance(v, str) and v}
    if isinstance(value, str) and value:
        return {value}
    return set()
