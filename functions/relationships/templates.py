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

from google.cloud.firestore_v1 import ArrayRemove, ArrayUnion

from backend.context import HandlerContext
from proxies.engine import SyncResult, sync_one
from proxies.targets import TEMPLATE_SOURCE
from shared import constants
from shared.diff import diff_keys
from shared.events import Updated

logger = logging.getLogger(__name__)


def _link_template(
    ctx: HandlerContext, template_id: str, property_id: str, linked: bool
) -> SyncResult:
    template = ctx.docs.get(constants.TEMPLATES_COLLECTION, template_id)
    if template is None:
        logger.warning("Property %s references missing template %s", property_id, template_id)
        return SyncResult()

    transform = ArrayUnion([property_id]) if linked else ArrayRemove([property_id])
    ctx.docs.update(
        constants.TEMPLATES_COLLECTION, template_id, {"properties": transform}
    )
    after = ctx.docs.get(constants.TEMPLATES_COLLECTION, template_id) or {}
    return sync_one(
        ctx,
        TEMPLATE_SOURCE,
        template_id,
        Updated(doc_id=template_id, before=template, after=after),
    )


def sync_property_templates(
    ctx: HandlerContext, property_id: str, before: object, after: object
) -> SyncResult:
    """
    Mirrors a property's template selection onto the templates' property lists
    and refreshes the property scoped template proxies.
    """
    added, removed = diff_keys(before, after)
    result = SyncResult()
    for template_id in sorted(added):
        result.extend(_link_template(ctx, template_id, property_id, True))
    for template_id in sorted(removed):
        result.extend(_link_template(ctx, template_id, property_id, False))
    if added or removed:
        logger.info(
            "Property %s: linked %d and unlinked %d templates",
            property_id,
            len(added),
            len(removed),
        )
    return result


def remove_property_from_templates(ctx: HandlerContext, property_id: str) -> list[str]:
    """Unlinks a deleted property from every template that lists it."""
    template_ids = [
        template_id
        for template_id, _ in ctx.docs.query(
            constants.TEMPLATES_COLLECTION,
            [("properties", "array_contains", property_id)],
        )
    ]
    for template_id in template_ids:
        _link_template(ctx, template_id, property_id, False)
    return template_ids
