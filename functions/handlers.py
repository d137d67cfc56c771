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

"""
Change handlers for each source collection.

Every handler runs its steps independently: a failing step is logged and the
remaining ones still run. The first failure is re-raised at the end so the
trigger reports it.
"""

import logging
from typing import Callable, Optional

from aggregation.property_meta import recompute_property_meta
from backend.context import HandlerContext
from deficiencies.archive import on_deficiency_archive_toggle
from deficiencies.inspection_sync import sync_inspection_deficiencies
from deficiencies.state_watcher import on_deficiency_state_update
from integrations.card_triggers import (
    comment_progress_note,
    publish_completed_photo,
    sync_card_due_date,
)
from proxies.engine import sync_one
from proxies.targets import INSPECTION_SOURCE, PROPERTY_SOURCE, TEMPLATE_SOURCE
from relationships.categories import on_category_renamed, remove_category
from relationships.teams import on_team_deleted, remove_property_from_teams, sync_property_team
from relationships.templates import remove_property_from_templates, sync_property_templates
from shared import constants
from shared.diff import diff_fields
from shared.errors import SyncError
from shared.events import ChangeEvent, Created, Deleted, Updated, after_of, before_of

logger = logging.getLogger(__name__)

# Inspection fields feeding the property counters.
META_FIELDS = (
    "property",
    "inspectionCompleted",
    "creationDate",
    "updatedLastDate",
    "score",
    "template",
)


def _run_steps(label: str, steps: list[tuple[str, Callable[[], object]]]) -> None:
    first_error: Optional[Exception] = None
    for name, step in steps:
        try:
            step()
        except Exception as e:
            logger.exception("%s: %s failed: %s", label, name, e)
            if first_error is None:
                first_error = e
    if first_error is not None:
        raise first_error


def _sync_proxies(ctx: HandlerContext, source, event: ChangeEvent) -> None:
    result = sync_one(ctx, source, event.doc_id, event)
    if result.errors:
        raise SyncError(f"{source.name}/{event.doc_id}: {'; '.join(result.errors)}")


def _meta_properties(event: ChangeEvent) -> list[str]:
    """Properties whose counters an inspection change can affect."""
    before = before_of(event)
    after = after_of(event)
    if isinstance(event, Updated) and not diff_fields(before, after, META_FIELDS):
        return []
    return sorted(
        {
            record["property"]
            for record in (before, after)
            if record and record.get("property")
        }
    )


def on_inspection_written(ctx: HandlerContext, event: ChangeEvent) -> None:
    steps = [("proxies", lambda: _sync_proxies(ctx, INSPECTION_SOURCE, event))]
    after = after_of(event)
    if after is not None:
        steps.append(
            (
                "deficiencies",
                lambda: sync_inspection_deficiencies(ctx, event.doc_id, after),
            )
        )
    for property_id in _meta_properties(event):
        steps.append(
            (f"meta {property_id}", lambda pid=property_id: recompute_property_meta(ctx, pid))
        )
    _run_steps(f"inspections/{event.doc_id}", steps)


def on_deficiency_written(ctx: HandlerContext, event: ChangeEvent) -> None:
    steps = []
    if isinstance(event, Updated):
        steps.append(("state", lambda: on_deficiency_state_update(ctx, event)))
        steps.append(("card due date", lambda: sync_card_due_date(ctx, event)))
        steps.append(("card photo", lambda: publish_completed_photo(ctx, event)))
        steps.append(("card progress note", lambda: comment_progress_note(ctx, event)))
        steps.append(("archive", lambda: on_deficiency_archive_toggle(ctx, event)))
    else:
        record = before_of(event) if isinstance(event, Deleted) else after_of(event)
        property_id = (record or {}).get("property")
        if property_id:
            steps.append(("meta", lambda: recompute_property_meta(ctx, property_id)))
    _run_steps(f"deficiencies/{event.doc_id}", steps)


def on_property_written(ctx: HandlerContext, event: ChangeEvent) -> None:
    property_id = event.doc_id
    before = before_of(event) or {}
    after = after_of(event) or {}

    if isinstance(event, Deleted):
        steps = [
            ("cascade", lambda: _sync_proxies(ctx, PROPERTY_SOURCE, event)),
            ("teams", lambda: remove_property_from_teams(ctx, property_id, before.get("team"))),
            ("templates", lambda: remove_property_from_templates(ctx, property_id)),
        ]
    else:
        steps = []
        if before.get("team") != after.get("team"):
            steps.append(
                (
                    "teams",
                    lambda: sync_property_team(
                        ctx, property_id, before.get("team"), after.get("team")
                    ),
                )
            )
        if before.get("templates") != after.get("templates"):
            steps.append(
                (
                    "templates",
                    lambda: sync_property_templates(
                        ctx, property_id, before.get("templates"), after.get("templates")
                    ),
                )
            )
        if isinstance(event, Created):
            steps.append(("meta", lambda: recompute_property_meta(ctx, property_id)))
    _run_steps(f"properties/{property_id}", steps)


def on_template_written(ctx: HandlerContext, event: ChangeEvent) -> None:
    _run_steps(
        f"templates/{event.doc_id}",
        [("proxies", lambda: _sync_proxies(ctx, TEMPLATE_SOURCE, event))],
    )


def on_category_written(ctx: HandlerContext, event: ChangeEvent) -> None:
    steps = []
    if isinstance(event, Deleted):
        steps.append(("remove", lambda: remove_category(ctx, event.doc_id)))
    elif isinstance(event, Updated) and event.before.get("name") != event.after.get("name"):
        steps.append(("rename", lambda: on_category_renamed(ctx, event.doc_id)))
    _run_steps(f"templateCategories/{event.doc_id}", steps)


def on_team_written(ctx: HandlerContext, event: ChangeEvent) -> None:
    steps = []
    if isinstance(event, Deleted):
        steps.append(("detach", lambda: on_team_deleted(ctx, event.doc_id, event.before)))
    _run_steps(f"teams/{event.doc_id}", steps)


HANDLERS: dict[str, Callable[[HandlerContext, ChangeEvent], None]] = {
    constants.INSPECTIONS_COLLECTION: on_inspection_written,
    constants.DEFICIENCIES_COLLECTION: on_deficiency_written,
    constants.PROPERTIES_COLLECTION: on_property_written,
    constants.TEMPLATES_COLLECTION: on_template_written,
    constants.TEMPLATE_CATEGORIES_COLLECTION: on_category_written,
    constants.TEAMS_COLLECTION: on_team_written,
}


def dispatch(ctx: HandlerContext, collection: str, event: Optional[ChangeEvent]) -> None:
    """Routes a change event to the handler of its collection."""
    if event is None:
        return
    handler = HANDLERS.get(collection)
    if handler is None:
        logger.warning("No handler for collection %s", collection)
        return
    handler(ctx, event)
