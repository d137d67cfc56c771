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

"""Proxy targets of each source collection, with their exclusion policies spelled out."""

import logging

from backend.context import HandlerContext
from proxies.engine import CascadeRule, ProxySource, ProxyTarget
from proxies.projector import ProxyPolicy
from shared import constants

logger = logging.getLogger(__name__)

INSPECTION_LIST_FIELDS = (
    "templateName",
    "templateCategory",
    "inspector",
    "inspectorName",
    "creationDate",
    "updatedLastDate",
    "score",
    "deficienciesExist",
    "inspectionCompleted",
    "itemsCompleted",
    "totalItems",
    "property",
)

TEMPLATE_LIST_FIELDS = ("name", "description", "category", "categoryName")
PROPERTY_TEMPLATE_FIELDS = TEMPLATE_LIST_FIELDS + ("trackDeficientItems",)


def _template_name(inspection: dict) -> str | None:
    return inspection.get("templateName") or (inspection.get("template") or {}).get("name")


def _is_completed(inspection: dict) -> bool:
    return inspection.get("inspectionCompleted") is True


_INSPECTION_DERIVED = {"templateName": _template_name}

PROPERTY_INSPECTION_POLICY = ProxyPolicy(
    name="propertyInspections",
    exclude_fields=("property",),
    derived=_INSPECTION_DERIVED,
)
PROPERTY_INSPECTION_LIST_POLICY = ProxyPolicy(
    name="propertyInspectionsList",
    include_fields=INSPECTION_LIST_FIELDS,
    exclude_fields=("property",),
    derived=_INSPECTION_DERIVED,
)
COMPLETED_INSPECTION_POLICY = ProxyPolicy(
    name="completedInspections",
    exclude_fields=("itemsCompleted", "totalItems"),
    guard=_is_completed,
    derived=_INSPECTION_DERIVED,
)
COMPLETED_INSPECTION_LIST_POLICY = ProxyPolicy(
    name="completedInspectionsList",
    include_fields=INSPECTION_LIST_FIELDS,
    exclude_fields=("itemsCompleted", "totalItems"),
    guard=_is_completed,
    derived=_INSPECTION_DERIVED,
)

TEMPLATE_LIST_POLICY = ProxyPolicy(name="templatesList", include_fields=TEMPLATE_LIST_FIELDS)
PROPERTY_TEMPLATE_POLICY = ProxyPolicy(
    name="propertyTemplates", include_fields=PROPERTY_TEMPLATE_FIELDS
)
PROPERTY_TEMPLATE_LIST_POLICY = ProxyPolicy(
    name="propertyTemplatesList", include_fields=TEMPLATE_LIST_FIELDS
)


def category_name(ctx: HandlerContext, template: dict) -> dict:
    """Folds the referenced category's name into a template record."""
    category_id = template.get("category")
    if not category_id:
        return {}
    category = ctx.docs.get(constants.TEMPLATE_CATEGORIES_COLLECTION, category_id)
    if category is None:
        logger.warning("Template references missing category %s", category_id)
        return {}
    return {"categoryName": category.get("name")}


def _download_urls(photos: dict | None) -> list[str]:
    return [
        photo["downloadURL"]
        for photo in (photos or {}).values()
        if isinstance(photo, dict) and photo.get("downloadURL")
    ]


def inspection_media(inspection: dict) -> list[str]:
    urls = []
    if inspection.get("inspectionReportURL"):
        urls.append(inspection["inspectionReportURL"])
    items = (inspection.get("template") or {}).get("items") or {}
    for item in items.values():
        urls.extend(_download_urls(item.get("photosData")))
        if item.get("signatureDownloadURL"):
            urls.append(item["signatureDownloadURL"])
    return urls


def deficiency_media(deficiency: dict) -> list[str]:
    return _download_urls(deficiency.get("completedPhotos"))


def property_media(property_record: dict) -> list[str]:
    return [
        property_record[name]
        for name in ("photoURL", "bannerPhotoURL", "logoURL")
        if property_record.get(name)
    ]


INSPECTION_TARGETS = (
    ProxyTarget(
        name="propertyInspections",
        root=constants.PROPERTY_INSPECTIONS_PATH,
        policy=PROPERTY_INSPECTION_POLICY,
        parent_field="property",
        child_segment=constants.INSPECTIONS_SEGMENT,
    ),
    ProxyTarget(
        name="propertyInspectionsList",
        root=constants.PROPERTY_INSPECTIONS_LIST_PATH,
        policy=PROPERTY_INSPECTION_LIST_POLICY,
        parent_field="property",
        child_segment=constants.INSPECTIONS_SEGMENT,
    ),
    ProxyTarget(
        name="completedInspections",
        root=constants.COMPLETED_INSPECTIONS_PATH,
        policy=COMPLETED_INSPECTION_POLICY,
    ),
    ProxyTarget(
        name="completedInspectionsList",
        root=constants.COMPLETED_INSPECTIONS_LIST_PATH,
        policy=COMPLETED_INSPECTION_LIST_POLICY,
    ),
)

INSPECTION_SOURCE = ProxySource(
    name="inspections",
    collection=constants.INSPECTIONS_COLLECTION,
    targets=INSPECTION_TARGETS,
    cascade_collections=(
        CascadeRule(
            collection=constants.DEFICIENCIES_COLLECTION,
            field="inspection",
            media=deficiency_media,
        ),
    ),
    media=inspection_media,
)

TEMPLATE_TARGETS = (
    ProxyTarget(
        name="templatesList",
        root=constants.TEMPLATES_LIST_PATH,
        policy=TEMPLATE_LIST_POLICY,
        enrich=category_name,
    ),
    ProxyTarget(
        name="propertyTemplates",
        root=constants.PROPERTY_TEMPLATES_PATH,
        policy=PROPERTY_TEMPLATE_POLICY,
        parent_field="properties",
        enrich=category_name,
    ),
    ProxyTarget(
        name="propertyTemplatesList",
        root=constants.PROPERTY_TEMPLATES_LIST_PATH,
        policy=PROPERTY_TEMPLATE_LIST_POLICY,
        parent_field="properties",
        enrich=category_name,
    ),
)

TEMPLATE_SOURCE = ProxySource(
    name="templates",
    collection=constants.TEMPLATES_COLLECTION,
    targets=TEMPLATE_TARGETS,
)

# Properties own no proxies of their own, but deleting one clears everything
# scoped to it.
PROPERTY_SOURCE = ProxySource(
    name="properties",
    collection=constants.PROPERTIES_COLLECTION,
    cascade_paths=(
        constants.PROPERTY_INSPECTIONS_PATH + "/{id}",
        constants.PROPERTY_INSPECTIONS_LIST_PATH + "/{id}",
        constants.PROPERTY_TEMPLATES_PATH + "/{id}",
        constants.PROPERTY_TEMPLATES_LIST_PATH + "/{id}",
    ),
    cascade_collections=(
        CascadeRule(
            collection=constants.INSPECTIONS_COLLECTION,
            field="property",
            media=inspection_media,
        ),
        CascadeRule(
            collection=constants.DEFICIENCIES_COLLECTION,
            field="property",
            media=deficiency_media,
        ),
    ),
    media=property_media,
)
