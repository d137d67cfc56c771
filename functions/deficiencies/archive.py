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

from aggregation.property_meta import recompute_property_meta
from backend.context import HandlerContext
from integrations.card_triggers import cleanup_deleted_card, find_card_id
from integrations.cards import CardDeletedError
from shared import constants
from shared.events import ChangeEvent, Updated

logger = logging.getLogger(__name__)


def on_deficiency_archive_toggle(ctx: HandlerContext, event: ChangeEvent) -> bool:
    """
    Moves a deficiency into the archive once its `archive` flag is set.

    The record is copied to the archive collection under the same id and the
    active record removed in one batch. A linked card is archived on the board
    first; when the board no longer has it, its references are cleared before
    the copy is taken. Returns True when the deficiency was archived.
    """
    if not isinstance(event, Updated):
        return False
    if event.before.get("archive") or not event.after.get("archive"):
        return False

    deficiency = event.after
    property_id = deficiency.get("property")
    card_id = find_card_id(ctx, property_id, event.doc_id) if property_id else None
    if card_id and ctx.cards:
        try:
            ctx.cards.archive_card(card_id, True)
        except CardDeletedError:
            cleanup_deleted_card(ctx, property_id, event.doc_id, card_id)
            deficiency = (
                ctx.docs.get(constants.DEFICIENCIES_COLLECTION, event.doc_id) or deficiency
            )

    batch = ctx.docs.batch()
    batch.set(
        constants.ARCHIVES_COLLECTION,
        event.doc_id,
        {
            **deficiency,
            constants.ARCHIVE_COLLECTION_FIELD: constants.DEFICIENCIES_COLLECTION,
            "archive": True,
        },
    )
    batch.delete(constants.DEFICIENCIES_COLLECTION, event.doc_id)
    batch.commit()
    logger.info("Deficiency %s archived", event.doc_id)

    if property_id:
        recompute_property_meta(ctx, property_id)
    return True
