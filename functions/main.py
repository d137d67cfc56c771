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

# Cloud functions keeping inspection proxies, property counters and deficiency
# side effects in step with their source documents.
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.

# Standard library imports
from typing import Optional

# Third-party library imports
from firebase_admin import initialize_app
from firebase_functions import https_fn, logger, options, scheduler_fn
from firebase_functions.firestore_fn import (
    on_document_written,
    Event,
    Change,
    DocumentSnapshot,
)

# Local application imports
import handlers
from backend.dependencies import get_handler_context
from deficiencies.overdue import sync_overdue_deficiencies
from integrations import notifications
from integrations.card_triggers import create_deficiency_card
from integrations.cards import CardServiceError
from reconciliation import jobs
from shared import constants
from shared.errors import PreconditionError, RecordNotFoundError
from shared.events import ChangeEvent, from_snapshots

TRIGGER_FUNCTION_TIMEOUT = 120
RECONCILIATION_TIMEOUT = 540
ID_MAX_LENGTH = 128

initialize_app()


def _snapshot_data(snapshot: Optional[DocumentSnapshot]) -> Optional[dict]:
    if snapshot is None or not snapshot.exists:
        return None
    return snapshot.to_dict() or {}


def _change_event(
    event: Event[Change[Optional[DocumentSnapshot]]], id_param: str
) -> Optional[ChangeEvent]:
    """Tags a document write as a create, update or delete."""
    return from_snapshots(
        event.params[id_param],
        _snapshot_data(event.data.before),
        _snapshot_data(event.data.after),
        params=dict(event.params),
    )


def _dispatch(collection: str, event: Event, id_param: str) -> None:
    change = _change_event(event, id_param)
    if change is None:
        return
    handlers.dispatch(get_handler_context(), collection, change)


@on_document_written(
    timeout_sec=TRIGGER_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_512,
    document=constants.INSPECTIONS_COLLECTION + "/{inspectionId}",
)
def on_inspection_written(event: Event[Change[DocumentSnapshot]]) -> None:
    """Proxies, deficiencies and property counters of an inspection."""
    _dispatch(constants.INSPECTIONS_COLLECTION, event, "inspectionId")


@on_document_written(
    timeout_sec=TRIGGER_FUNCTION_TIMEOUT,
    document=constants.DEFICIENCIES_COLLECTION + "/{deficiencyId}",
)
def on_deficiency_written(event: Event[Change[DocumentSnapshot]]) -> None:
    _dispatch(constants.DEFICIENCIES_COLLECTION, event, "deficiencyId")


@on_document_written(
    timeout_sec=TRIGGER_FUNCTION_TIMEOUT,
    memory=options.MemoryOption.MB_512,
    document=constants.PROPERTIES_COLLECTION + "/{propertyId}",
)
def on_property_written(event: Event[Change[DocumentSnapshot]]) -> None:
    """Team and template links of a property, and its cascade on delete."""
    _dispatch(constants.PROPERTIES_COLLECTION, event, "propertyId")


@on_document_written(
    timeout_sec=TRIGGER_FUNCTION_TIMEOUT,
    document=constants.TEMPLATES_COLLECTION + "/{templateId}",
)
def on_template_written(event: Event[Change[DocumentSnapshot]]) -> None:
    _dispatch(constants.TEMPLATES_COLLECTION, event, "templateId")


@on_document_written(
    timeout_sec=TRIGGER_FUNCTION_TIMEOUT,
    document=constants.TEMPLATE_CATEGORIES_COLLECTION + "/{categoryId}",
)
def on_template_category_written(event: Event[Change[DocumentSnapshot]]) -> None:
    _dispatch(constants.TEMPLATE_CATEGORIES_COLLECTION, event, "categoryId")


@on_document_written(
    timeout_sec=TRIGGER_FUNCTION_TIMEOUT,
    document=constants.TEAMS_COLLECTION + "/{teamId}",
)
def on_team_written(event: Event[Change[DocumentSnapshot]]) -> None:
    """Detaches a deleted team from its properties and users."""
    _dispatch(constants.TEAMS_COLLECTION, event, "teamId")


@scheduler_fn.on_schedule(
    schedule="every day 03:00",
    timeout_sec=RECONCILIATION_TIMEOUT,
    memory=options.MemoryOption.GB_1,
)
def run_reconciliation(event: scheduler_fn.ScheduledEvent) -> None:
    """Repairs proxies, property counters and team memberships."""
    reports = jobs.run_all(get_handler_context())
    failed = [report.name for report in reports if not report.ok]
    if failed:
        logger.warn(f"Reconciliation finished with errors in: {', '.join(failed)}")


@scheduler_fn.on_schedule(schedule="every 1 hours", timeout_sec=RECONCILIATION_TIMEOUT)
def sync_overdue(event: scheduler_fn.ScheduledEvent) -> None:
    report = sync_overdue_deficiencies(get_handler_context())
    logger.info(
        f"Overdue sync: {len(report.overdue)} overdue, "
        f"{len(report.progress_required)} progress notes, {len(report.errors)} errors"
    )


@scheduler_fn.on_schedule(schedule="every 5 minutes")
def publish_push_notifications(event: scheduler_fn.ScheduledEvent) -> None:
    report = notifications.publish_push_notifications(get_handler_context())
    if report.failed:
        logger.warn(f"Push publishing incomplete for: {', '.join(report.failed)}")


@scheduler_fn.on_schedule(schedule="every 5 minutes")
def publish_slack_notifications(event: scheduler_fn.ScheduledEvent) -> None:
    report = notifications.publish_slack_notifications(get_handler_context())
    if report.failed:
        logger.warn(f"Chat publishing failed for: {', '.join(report.failed)}")


@https_fn.on_call(memory=options.MemoryOption.MB_512)
def request_deficiency_card(req: https_fn.CallableRequest) -> dict:
    """Creates a board card for a deficiency and returns its URL."""
    property_id = req.data.get("property_id")
    deficiency_id = req.data.get("deficiency_id")

    if not property_id or not deficiency_id:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Must specify property_id and deficiency_id parameters.",
        )

    if len(property_id) > ID_MAX_LENGTH or len(deficiency_id) > ID_MAX_LENGTH:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Incorrect id length.",
        )

    ctx = get_handler_context()
    try:
        card_id = create_deficiency_card(ctx, property_id, deficiency_id)
    except RecordNotFoundError:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.NOT_FOUND,
            "The requested deficiency was not found.",
        )
    except PreconditionError as e:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.FAILED_PRECONDITION, str(e)
        )
    except CardServiceError as e:
        logger.error(f"Card creation for {deficiency_id} failed: {e}")
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.UNAVAILABLE,
            "The card service is unavailable.",
        )

    return {"cardId": card_id, "cardUrl": ctx.cards.card_url(card_id)}
