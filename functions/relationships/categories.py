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

"""Template category changes cascaded onto templates and their proxies."""

import logging
from dataclasses import dataclass, field

from google.cloud.firestore_v1 import DELETE_FIELD

from backend.context import HandlerContext
from backend.tree import join_path
from proxies.engine import SyncResult, sync_one
from proxies.targets import TEMPLATE_SOURCE
from shared import constants
from shared.events import Updated

logger = logging.getLogger(__name__)


@dataclass
class CategoryCascade:
    templates: list[str] = field(default_factory=list)
    proxies: list[str] = field(default_factory=list)


def _template_proxy_paths(ctx: HandlerContext) -> list[str]:
    paths = [
        join_path(constants.TEMPLATES_LIST_PATH, template_id)
        for template_id in ctx.tree.child_keys(constants.TEMPLATES_LIST_PATH)
    ]
    for root in (constants.PROPERTY_TEMPLATES_PATH, constants.PROPERTY_TEMPLATES_LIST_PATH):
        for property_id in ctx.tree.child_keys(root):
            paths.extend(
                join_path(root, property_id, template_id)
                for template_id in ctx.tree.child_keys(join_path(root, property_id))
            )
    return paths


def remove_category(ctx: HandlerContext, category_id: str) -> CategoryCascade:
    """
    Detaches a deleted category from every template that used it.

    Only the `category` field is removed from template documents; the templates
    themselves stay. Proxies that referenced the category lose `category` and
    `categoryName`, and all other proxies are left untouched.
    """
    cascade = CategoryCascade()

    templates = ctx.docs.query(
        constants.TEMPLATES_COLLECTION, [("category", "==", category_id)]
    )
    if templates:
        batch = ctx.docs.batch()
        for template_id, _ in templates:
            batch.update(
                constants.TEMPLATES_COLLECTION, template_id, {"category": DELETE_FIELD}
            )
            cascade.templates.append(template_id)
        batch.commit()

    updates = {}
    for path in _template_proxy_paths(ctx):
        proxy = ctx.tree.get(path)
        if isinstance(proxy, dict) and proxy.get("category") == category_id:
            updates[join_path(path, "category")] = None
            updates[join_path(path, "categoryName")] = None
            cascade.proxies.append(path)
    if updates:
        ctx.tree.update(updates)

    logger.info(
        "Category %s removed from %d templates and %d proxies",
        category_id,
        len(cascade.templates),
        len(cascade.proxies),
    )
    return cascade


def on_category_renamed(ctx: HandlerContext, category_id: str) -> SyncResult:
    """Refreshes the category name folded into the category's template proxies."""
    result = SyncResult()
    for template_id, template in ctx.docs.query(
        constants.TEMPLATES_COLLECTION, [("category", "==", category_id)]
    ):
        result.extend(
            sync_one(
                ctx,
                TEMPLATE_SOURCE,
                template_id,
                Updated(doc_id=template_id, before=template, after=template),
            )
        )
    return result
