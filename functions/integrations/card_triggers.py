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
Card board side effects of deficiency transitions.

Each call is attempted once. A 404 from the board means the card was deleted
there, so every local reference to it is cleared instead of retrying.
"""

import logging
from typing import Optional

from google.cloud.firestore_v1 import DELETE_FIELD

from backend.context import HandlerContext
from backend.queue import STATE_EVENT, DeficiencyEvent
from integrations.cards import CardDeletedError, CardServiceError
from shared import constants
from shared.errors import PreconditionError, RecordNotFoundError
from shared.events import Updated
from shared.types import DeficiencyState, StateHistoryEntry

logger = logging.getLogger(__name__)

CARD_ATTACHMENT_FIELD = "trelloCardAttachment"


def find_card_id(ctx: HandlerContext, property_id: str, deficiency_id: str) -> Optional[str]:
    """Looks up the card linked to a deficiency in the property's card map."""
    system = ctx.docs.get(
        constants.SYSTEM_COLLECTION, constants.trello_system_id(property_id)
    )
    for card_id, linked_id in ((system or {}).get("cards") or {}).items():
        if linked_id == deficiency_id:
            return card_id
    return None


def cleanup_deleted_card(
    ctx: HandlerContext, property_id: str, deficiency_id: str, card_id: str
) -> None:
    """
    Clears every local reference to a card deleted on the board: the card map
    entry, the deficiency's card URL, and completed photo attachment markers,
    on the active and the archived record, in one batch.
    """
    batch = ctx.docs.batch()
    system_id = constants.trello_system_id(property_id)
    if ctx.docs.get(constants.SYSTEM_COLLECTION, system_id) is not None:
        batch.update(
            constants.SYSTEM_COLLECTION, system_id, {f"cards.{card_id}": DELETE_FIELD}
        )

    for collection in (constants.DEFICIENCIES_COLLECTION, constants.ARCHIVES_COLLECTION):
        record = ctx.docs.get(collection, deficiency_id)
        if record is None:
            continue
        updates = {}
        if "trelloCardURL" in record:
            updates["trelloCardURL"] = DELETE_FIELD
        for photo_id, photo in (record.get("completedPhotos") or {}).items():
            if isinstance(photo, dict) and CARD_ATTACHMENT_FIELD in photo:
                updates[f"completedPhotos.{photo_id}.{CARD_ATTACHMENT_FIELD}"] = DELETE_FIELD
        if updates:
            batch.update(collection, deficiency_id, updates)

    batch.commit()
    logger.info(
        "Removed references to deleted card %s of deficiency %s", card_id, deficiency_id
    )


def _previous_state(deficiency: dict) -> tuple[str, Optional[StateHistoryEntry]]:
    """Previous state and the entry of the latest transition from the history."""
    entries = sorted(
        (
            StateHistoryEntry.from_record(entry)
            for entry in (deficiency.get("stateHistory") or {}).values()
            if isinstance(entry, dict) and entry.get("state")
        ),
        key=lambda entry: entry.created_at or 0,
        reverse=True,
    )
    latest = entries[0] if entries else None
    previous = entries[1].state if len(entries) > 1 else str(DeficiencyState.REQUIRES_ACTION)
    return previous, latest


def state_change_comment(ctx: HandlerContext, deficiency: dict) -> str:
    """Card comment for a transition; user provided text is not escaped."""
    previous, latest = _previous_state(deficiency)
    current = deficiency.get("state") or ""
    lines = [f"{previous.upper()} → {current.upper()}"]

    user = None
    if latest and latest.user and latest.user != constants.SYSTEM_USER:
        user = ctx.docs.get(constants.USERS_COLLECTION, latest.user)
    if user:
        name = " ".join(
            part for part in (user.get("firstName"), user.get("lastName")) if part
        )
        lines.append(f"By {name} ({user.get('email', '')})".replace(" ()", ""))
    else:
        lines.append("By the system")

    if deficiency.get("currentPlanToFix"):
        lines.append(f"Plan to fix: {deficiency['currentPlanToFix']}")
    return "\n".join(lines)


def close_card(
    ctx: HandlerContext, property_id: str, deficiency_id: str, deficiency: dict, card_id: str
) -> bool:
    """Moves a card to the property's done list and detaches it from the deficiency."""
    integration = ctx.docs.get(
        constants.INTEGRATIONS_COLLECTION, constants.trello_integration_id(property_id)
    )
    closed_list = (integration or {}).get("closedList")
    if not closed_list:
        logger.warning("Property %s has no done list configured", property_id)
        return False

    due_complete = bool(deficiency.get("dueDates") or deficiency.get("deferredDates"))
    ctx.cards.move_card(card_id, closed_list, due_complete=due_complete)

    batch = ctx.docs.batch()
    batch.update(
        constants.SYSTEM_COLLECTION,
        constants.trello_system_id(property_id),
        {f"cards.{card_id}": DELETE_FIELD},
    )
    batch.update(
        constants.DEFICIENCIES_COLLECTION, deficiency_id, {"trelloCardURL": DELETE_FIELD}
    )
    batch.commit()
    logger.info("Card %s of deficiency %s closed", card_id, deficiency_id)
    return True


def handle_state_event(ctx: HandlerContext, property_id: str, deficiency_id: str, state: str) -> bool:
    """
    Applies the card side effect of a deficiency reaching `state`.

    Closing moves the card to the done list; any other state comments on it.
    Returns True when the board was called.

    Raises:
        CardServiceError: The board failed for a reason other than a deleted card.
    """
    deficiency = ctx.docs.get(constants.DEFICIENCIES_COLLECTION, deficiency_id)
    if deficiency is None:
        logger.warning("Deficiency %s not found; skipping card update", deficiency_id)
        return False
    if deficiency.get("state") != state:
        logger.info(
            "Deficiency %s moved on from %s; skipping stale event", deficiency_id, state
        )
        return False

    card_id = find_card_id(ctx, property_id, deficiency_id)
    if not card_id:
        return False

    try:
        if state == DeficiencyState.CLOSED:
            return close_card(ctx, property_id, deficiency_id, deficiency, card_id)
        ctx.cards.comment_card(card_id, state_change_comment(ctx, deficiency))
        return True
    except CardDeletedError:
        cleanup_deleted_card(ctx, property_id, deficiency_id, card_id)
        return True
    except CardServiceError as e:
        logger.error("Card update for deficiency %s failed: %s", deficiency_id, e)
        raise


def create_deficiency_card(ctx: HandlerContext, property_id: str, deficiency_id: str) -> str:
    """
    Creates a card for a deficiency in the property's open list and links it.

    Returns the card id; an already linked deficiency returns its existing card.
    """
    deficiency = ctx.docs.get(constants.DEFICIENCIES_COLLECTION, deficiency_id)
    if deficiency is None:
        raise RecordNotFoundError(constants.DEFICIENCIES_COLLECTION, deficiency_id)
    existing = find_card_id(ctx, property_id, deficiency_id)
    if existing:
        return existing

    integration = ctx.docs.get(
        constants.INTEGRATIONS_COLLECTION, constants.trello_integration_id(property_id)
    )
    open_list = (integration or {}).get("openList")
    if not open_list:
        raise PreconditionError(f"property {property_id} has no open card list")

    description = ctx.settings.deficiency_url(property_id, deficiency_id)
    if deficiency.get("itemInspectorNotes"):
        description += f"\n\n{deficiency['itemInspectorNotes']}"
    payload = {"name": deficiency.get("itemTitle") or deficiency_id, "desc": description}
    if deficiency.get("currentDueDate"):
        payload["due"] = deficiency["currentDueDate"]
    card_id = ctx.cards.create_card(open_list, payload)

    batch = ctx.docs.batch()
    batch.set(
        constants.SYSTEM_COLLECTION,
        constants.trello_system_id(property_id),
        {"cards": {card_id: deficiency_id}},
        merge=True,
    )
    batch.update(
        constants.DEFICIENCIES_COLLECTION,
        deficiency_id,
        {"trelloCardURL": ctx.cards.card_url(card_id)},
    )
    batch.commit()
    logger.info("Card %s created for deficiency %s", card_id, deficiency_id)
    return card_id


def latest_entry(history: Optional[dict]) -> tuple[Optional[str], Optional[dict]]:
    """Id and value of the most recent entry of a `{id: {createdAt, ...}}` map."""
    entries = [
        (entry.get("createdAt") or 0, entry_id, entry)
        for entry_id, entry in (history or {}).items()
        if isinstance(entry, dict)
    ]
    if not entries:
        return None, None
    _, entry_id, entry = max(entries, key=lambda e: (e[0], e[1]))
    return entry_id, entry


def card_due_date(deficiency: dict) -> Optional[str]:
    """Due date a deficiency's card should show; None clears it."""
    state = deficiency.get("state")
    if state == DeficiencyState.GO_BACK:
        return None
    if state == DeficiencyState.DEFERRED and deficiency.get("currentDeferredDate"):
        return deficiency["currentDeferredDate"]
    return deficiency.get("currentDueDate")


def _call_card(ctx: HandlerContext, property_id: str, deficiency_id: str, card_id: str, call):
    """Runs one board call; a deleted card clears its references and returns None."""
    try:
        return call()
    except CardDeletedError:
        cleanup_deleted_card(ctx, property_id, deficiency_id, card_id)
        return None


def sync_card_due_date(ctx: HandlerContext, event: Updated) -> bool:
    """
    Mirrors a deficiency's due or deferred date onto its card.

    A deficiency sent back clears the card's due date. Returns True when the
    board was called.
    """
    due = card_due_date(event.after)
    if due == card_due_date(event.before):
        return False
    property_id = event.after.get("property")
    card_id = find_card_id(ctx, property_id, event.doc_id) if property_id else None
    if not card_id or ctx.cards is None:
        return False

    _call_card(
        ctx, property_id, event.doc_id, card_id, lambda: ctx.cards.set_due(card_id, due)
    )
    logger.info("Card %s due date set to %s", card_id, due)
    return True


def publish_completed_photo(ctx: HandlerContext, event: Updated) -> bool:
    """
    Attaches a deficiency's newest completed photo to its card and stores the
    attachment id on the photo. Returns True when the board was called.
    """
    photo_id, photo = latest_entry(event.after.get("completedPhotos"))
    if photo is None or (photo_id, photo) == latest_entry(event.before.get("completedPhotos")):
        return False
    if photo.get(CARD_ATTACHMENT_FIELD) or not photo.get("downloadURL"):
        return False
    property_id = event.after.get("property")
    card_id = find_card_id(ctx, property_id, event.doc_id) if property_id else None
    if not card_id or ctx.cards is None:
        return False

    attachment_id = _call_card(
        ctx,
        property_id,
        event.doc_id,
        card_id,
        lambda: ctx.cards.add_attachment(card_id, photo["downloadURL"]),
    )
    if attachment_id:
        ctx.docs.update(
            constants.DEFICIENCIES_COLLECTION,
            event.doc_id,
            {f"completedPhotos.{photo_id}.{CARD_ATTACHMENT_FIELD}": attachment_id},
        )
        logger.info("Photo %s attached to card %s", photo_id, card_id)
    return True


def progress_note_comment(author: dict, note: str) -> str:
    name = " ".join(part for part in (author.get("firstName"), author.get("lastName")) if part)
    byline = f"{name} ({author['email']})" if author.get("email") else name
    return f"Progress Note: {note}\nBy {byline}"


def comment_progress_note(ctx: HandlerContext, event: Updated) -> bool:
    """
    Comments a deficiency's newest progress note on its card. Returns True
    when the board was called.

    Raises:
        RecordNotFoundError: The note's author does not exist.
    """
    note_id, note = latest_entry(event.after.get("progressNotes"))
    if note is None or (note_id, note) == latest_entry(event.before.get("progressNotes")):
        return False
    if not note.get("progressNote"):
        return False
    property_id = event.after.get("property")
    card_id = find_card_id(ctx, property_id, event.doc_id) if property_id else None
    if not card_id or ctx.cards is None:
        return False

    author = ctx.docs.get(constants.USERS_COLLECTION, note.get("user") or "")
    if author is None:
        raise RecordNotFoundError(constants.USERS_COLLECTION, note.get("user") or "")
    text = progress_note_comment(author, note["progressNote"])
    _call_card(
        ctx, property_id, event.doc_id, card_id, lambda: ctx.cards.comment_card(card_id, text)
    )
    logger.info("Progress note %s commented on card %s", note_id, card_id)
    return True


def handle_event(ctx: HandlerContext, message: str) -> bool:
    """Applies one queued deficiency event."""
    event = DeficiencyEvent.parse(message)
    if event.kind != STATE_EVENT:
        raise PreconditionError(f"unknown deficiency event kind: {event.kind!r}")
    return handle_state_event(ctx, event.property_id, event.deficiency_id, event.value)
