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
from dataclasses import dataclass, field
from typing import Optional

from backend.context import HandlerContext
from deficiencies.derive import (
    PROXY_ATTRS,
    create_deficient_items,
    find_matching_items,
    find_missing_items,
    find_new_items,
    proxy_attr_updates,
)
from shared import constants

logger = logging.getLogger(__name__)


@dataclass
class DeficiencySyncResult:
    created: list[str] = field(default_factory=list)
    restored: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.restored or self.updated or self.removed)


def find_archived_deficiency(
    ctx: HandlerContext, inspection_id: str, item_id: str
) -> Optional[tuple[str, dict]]:
    archived = ctx.docs.query(
        constants.ARCHIVES_COLLECTION,
        [
            (constants.ARCHIVE_COLLECTION_FIELD, "==", constants.DEFICIENCIES_COLLECTION),
            ("inspection", "==", inspection_id),
            ("item", "==", item_id),
        ],
    )
    return archived[0] if archived else None


def sync_inspection_deficiencies(
    ctx: HandlerContext, inspection_id: str, inspection: dict
) -> DeficiencySyncResult:
    """
    Brings an inspection's deficiencies in line with its deficient items.

    Deficiencies of items no longer flagged are deleted, matching ones get
    their item attributes re-copied, and newly flagged items get a
    deficiency, restored from the archive when one was archived before. All
    writes go through a single batch.
    """
    result = DeficiencySyncResult()
    template = inspection.get("template") or {}
    if inspection.get("inspectionCompleted") is not True or (
        template.get("trackDeficientItems") is not True
    ):
        return result

    now = ctx.now()
    derived = create_deficient_items(inspection_id, inspection, now)
    existing: dict[str, tuple[str, dict]] = {}
    for deficiency_id, data in ctx.docs.query(
        constants.DEFICIENCIES_COLLECTION, [("inspection", "==", inspection_id)]
    ):
        if data.get("item"):
            existing[data["item"]] = (deficiency_id, data)
    existing_records = {item_id: data for item_id, (_, data) in existing.items()}

    batch = ctx.docs.batch()

    for item_id in find_missing_items(existing_records, derived):
        deficiency_id, _ = existing[item_id]
        batch.delete(constants.DEFICIENCIES_COLLECTION, deficiency_id)
        result.removed.append(deficiency_id)

    for item_id in find_matching_items(existing_records, derived):
        deficiency_id, current = existing[item_id]
        updates = proxy_attr_updates(current, derived[item_id])
        if updates:
            updates["updatedAt"] = now
            batch.update(constants.DEFICIENCIES_COLLECTION, deficiency_id, updates)
            result.updated.append(deficiency_id)

    for item_id in find_new_items(existing_records, derived):
        fresh = derived[item_id]
        archived = find_archived_deficiency(ctx, inspection_id, item_id)
        if archived:
            deficiency_id, record = archived
            record = {
                k: v
                for k, v in record.items()
                if k not in (constants.ARCHIVE_COLLECTION_FIELD, "archive")
            }
            record.update({attr: fresh[attr] for attr in PROXY_ATTRS if attr in fresh})
            record["updatedAt"] = now
            batch.set(constants.DEFICIENCIES_COLLECTION, deficiency_id, record)
            batch.delete(constants.ARCHIVES_COLLECTION, deficiency_id)
            result.restored.append(deficiency_id)
        else:
            deficiency_id = ctx.docs.new_id(constants.DEFICIENCIES_COLLECTION)
            batch.set(constants.DEFICIENCIES_COLLECTION, deficiency_id, fresh)
            result.created.append(deficiency_id)

    if result.changed:
        batch.commit()
        logger.info(
            "Inspection %s deficiencies: %d created, %d restored, %d updated, %d removed",
            inspection_id,
            len(result.created),
            len(result.restored),
            len(result.updated),
            len(result.removed),
        )
    return result
