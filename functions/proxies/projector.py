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

import copy
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

SCORE_FIELD = "score"


def _always(record: dict) -> bool:
    return True


@dataclass(frozen=True)
class ProxyPolicy:
    """Describes how a source record is reduced to one proxy target.

    Attributes:
        name: Label used in logs.
        include_fields: Fields to copy; None copies every field not excluded.
        exclude_fields: Fields never copied, even when included.
        guard: The proxy exists only while this returns True.
        derived: Fields computed from the source before selection.
    """

    name: str
    include_fields: Optional[tuple[str, ...]] = None
    exclude_fields: tuple[str, ...] = ()
    guard: Callable[[dict], bool] = _always
    derived: Mapping[str, Callable[[dict], Any]] = field(default_factory=dict)


def sanitize_score(value: Any) -> float:
    """Clamps a score to a non-negative number; anything else becomes 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if math.isnan(value) or value < 0:
        return 0
    return value


def compact(value: Any) -> Any:
    """Recursively drops None values, empty maps and empty lists.

    The tree store never keeps them, so a proxy holding one would never compare
    equal to what was stored.
    """
    if isinstance(value, dict):
        result = {}
        for k, v in value.items():
            v = compact(v)
            if v is not None and v != {} and v != []:
                result[k] = v
        return result
    if isinstance(value, list):
        return [compact(v) for v in value]
    return value


def project(record: Optional[dict], policy: ProxyPolicy) -> Optional[dict]:
    """
    Reduces a source record to a proxy record for one target.

    Returns None when the record is missing or the policy guard fails, which
    callers treat as "delete the proxy if present". The source record is never
    mutated.
    """
    if record is None or not policy.guard(record):
        return None

    source = copy.deepcopy(record)
    for name, compute in policy.derived.items():
        source[name] = compute(source)

    selected = policy.include_fields if policy.include_fields is not None else tuple(source)
    fields = [f for f in selected if f not in policy.exclude_fields]

    proxy = {f: source[f] for f in fields if source.get(f) is not None}
    if SCORE_FIELD in fields:
        proxy[SCORE_FIELD] = sanitize_score(source.get(SCORE_FIELD))
    return compact(proxy) or None
