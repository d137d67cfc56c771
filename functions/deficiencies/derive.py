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
from typing import Optional

from google.cloud.firestore_v1 import DELETE_FIELD

from deficiencies.states import INITIAL_STATE, is_deficient_selection
from shared.diff import diff_fields
from shared.errors import PreconditionError

ITEM_VALUE_NAMES = (
    "mainInputZeroValue",
    "mainInputOneValue",
    "mainInputTwoValue",
    "mainInputThreeValue",
    "mainInputFourValue",
)

# Attributes that may be falsy and must still be stored.
KEEP_FALSY_ATTRS = ("itemMainInputSelection", "hasItemPhotoData")

# Deficiency attributes copied from the source inspection item on every
# inspection write.
PROXY_ATTRS = (
    "itemMainInputType",
    "itemMainInputSelection",
    "itemInspectorNotes",
    "itemPhotosData",
    "hasItemPhotoData",
    "itemAdminEdits",
    "itemDataLastUpdatedDate",
    "itemTitle",
    "itemScore",
    "sectionTitle",
    "sectionSubtitle",
    "sectionType",
)


def latest_admin_edit_date(item: dict) -> Optional[float]:
    dates = [
        edit.get("edit_date")
        for edit in (item.get("adminEdits") or {}).values()
        if isinstance(edit, dict) and edit.get("edit_date")
    ]
    return max(dates) if dates else None


def cleaned_photos_data(photos_data: Optional[dict]) -> dict:
    """Copies only the photos that finished uploading."""
    return {
        photo_id: copy.deepcopy(photo)
        for photo_id, photo in (photos_data or {}).items()
        if isinstance(photo, dict) and photo.get("downloadURL")
    }


def _section_items(template: dict, section_id: str) -> list[dict]:
    items = [
        item
        for item in (template.get("items") or {}).values()
        if item.get("sectionId") == section_id
    ]
    return sorted(items, key=lambda item: item.get("index") or 0)


def section_subtitle(template: dict, section_id: str) -> Optional[str]:
    """A multi section is labelled by its first item when that is a text input."""
    items = _section_items(template, section_id)
    if not items:
        return None
    first = items[0]
    if first.get("itemType") == "text_input" and first.get("textInputValue"):
        return first["textInputValue"]
    return None


def item_score(item: dict) -> float:
    selection = item.get("mainInputSelection")
    if not isinstance(selection, int) or not 0 <= selection < len(ITEM_VALUE_NAMES):
        return 0
    return item.get(ITEM_VALUE_NAMES[selection]) or 0


def deficient_item_ids(template: dict) -> list[str]:
    """Ids of the template items whose selection flags them deficient."""
    return sorted(
        item_id
        for item_id, item in (template.get("items") or {}).items()
        if is_deficient_selection(item, template)
    )


def create_deficient_items(
    inspection_id: str, inspection: dict, now: float
) -> dict[str, dict]:
    """
    Builds a fresh deficiency record for every deficient item of a completed
    inspection that tracks deficiencies, keyed by item id.

    Raises:
        PreconditionError: The inspection is not completed or does not track
            deficient items.
    """
    template = inspection.get("template") or {}
    if inspection.get("inspectionCompleted") is not True:
        raise PreconditionError(f"inspection {inspection_id} is not completed")
    if template.get("trackDeficientItems") is not True:
        raise PreconditionError(f"inspection {inspection_id} does not track deficient items")

    items = template.get("items") or {}
    sections = template.get("sections") or {}
    result = {}
    for item_id in deficient_item_ids(template):
        item = items[item_id]
        section = sections.get(item.get("sectionId")) or {}
        section_type = section.get("section_type") or "single"
        subtitle = None
        if section_type == "multi":
            subtitle = section_subtitle(template, item.get("sectionId"))
        photos = cleaned_photos_data(item.get("photosData"))

        record = {
            "state": str(INITIAL_STATE),
            "property": inspection.get("property"),
            "inspection": inspection_id,
            "item": item_id,
            "createdAt": now,
            "updatedAt": now,
            "itemMainInputType": item.get("mainInputType"),
            "itemMainInputSelection": item.get("mainInputSelection"),
            "itemTitle": item.get("title"),
            "itemInspectorNotes": item.get("inspectorNotes"),
            "itemAdminEdits": copy.deepcopy(item.get("adminEdits")) or None,
            "itemPhotosData": photos or None,
            "hasItemPhotoData": bool(photos),
            "itemDataLastUpdatedDate": (
                latest_admin_edit_date(item) or inspection.get("updatedLastDate")
            ),
            "itemScore": item_score(item),
            "sectionTitle": section.get("title"),
            "sectionSubtitle": subtitle,
            "sectionType": section_type,
        }
        result[item_id] = {
            attr: value
            for attr, value in record.items()
            if value or (attr in KEEP_FALSY_ATTRS and value is not None)
        }
    return result


def find_missing_items(existing: dict[str, dict], derived: dict[str, dict]) -> list[str]:
    """Items holding a deficiency that the inspection no longer flags."""
    return sorted(set(existing) - set(derived))


def find_matching_items(existing: dict[str, dict], derived: dict[str, dict]) -> list[str]:
    return sorted(set(existing) & set(derived))


def find_new_items(existing: dict[str, dict], derived: dict[str, dict]) -> list[str]:
    return sorted(set(derived) - set(existing))


def proxy_attr_updates(current: dict, fresh: dict) -> dict:
    """Field updates re-copying source item attributes onto a stored deficiency."""
    diff = diff_fields(current, fresh, PROXY_ATTRS)
    updates = {**diff.added, **diff.changed}
    updates.update({attr: DELETE_FIELD for attr in diff.removed})
    return updates
