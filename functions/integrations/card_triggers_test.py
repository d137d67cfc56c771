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
import unittest
from unittest.mock import patch

from backend.context import in_memory_context
from integrations.card_triggers import (
    cleanup_deleted_card,
    comment_progress_note,
    create_deficiency_card,
    find_card_id,
    handle_event,
    handle_state_event,
    latest_entry,
    publish_completed_photo,
    state_change_comment,
    sync_card_due_date,
)
from integrations.cards import CardServiceError
from shared import constants
from shared.errors import PreconditionError, RecordNotFoundError
from shared.events import Updated

SYSTEM_ID = constants.trello_system_id("p1")


class CardTriggersTest(unittest.TestCase):

    def setUp(self):
        self.ctx = in_memory_context()
        self.ctx.docs.set(
            constants.INTEGRATIONS_COLLECTION,
            constants.trello_integration_id("p1"),
            {"openList": "list-open", "closedList": "list-done"},
        )
        self.ctx.docs.set(constants.SYSTEM_COLLECTION, SYSTEM_ID, {"cards": {"card-7": "d1"}})
        self.ctx.docs.set(
            constants.USERS_COLLECTION,
            "u1",
            {"firstName": "Ann", "lastName": "Lee", "email": "ann@example.com"},
        )
        self.ctx.cards.cards["card-7"] = {"idList": "list-open"}
        self.deficiency = {
            "property": "p1",
            "state": "pending",
            "itemTitle": "Sink",
            "trelloCardURL": "https://trello.test/c/card-7",
            "currentPlanToFix": "Replace <trap>",
            "stateHistory": {
                "h1": {"state": "requires-action", "user": "u1", "createdAt": 1},
                "h2": {"state": "pending", "user": "u1", "createdAt": 2},
            },
            "completedPhotos": {"ph1": {"downloadURL": "x.jpg", "trelloCardAttachment": "att1"}},
        }
        self.ctx.docs.set(constants.DEFICIENCIES_COLLECTION, "d1", self.deficiency)

    def test_find_card_id(self):
        self.assertEqual(find_card_id(self.ctx, "p1", "d1"), "card-7")
        self.assertIsNone(find_card_id(self.ctx, "p1", "d2"))
        self.assertIsNone(find_card_id(self.ctx, "p2", "d1"))

    def test_unknown_event_kind(self):
        with self.assertRaises(PreconditionError):
            handle_event(self.ctx, "p1/d1/card/create")

    def test_comment_text(self):
        text = state_change_comment(self.ctx, self.deficiency)
        self.assertEqual(
            text,
            "REQUIRES-ACTION → PENDING\nBy Ann Lee (ann@example.com)\nPlan to fix: Replace <trap>",
        )

    def test_comment_defaults_for_system_transitions(self):
        deficiency = {
            "state": "overdue",
            "stateHistory": {"h1": {"state": "overdue", "user": "system", "createdAt": 1}},
        }
        self.assertEqual(
            state_change_comment(self.ctx, deficiency), "REQUIRES-ACTION → OVERDUE\nBy the system"
        )

    def test_state_change_comments_on_card(self):
        self.assertTrue(handle_state_event(self.ctx, "p1", "d1", "pending"))
        [(card_id, text)] = self.ctx.cards.comments
        self.assertEqual(card_id, "card-7")
        self.assertTrue(text.startswith("REQUIRES-ACTION → PENDING"))

    def test_stale_events_are_skipped(self):
        self.assertFalse(handle_state_event(self.ctx, "p1", "d1", "completed"))
        self.assertEqual(self.ctx.cards.comments, [])

    def test_closing_moves_card_and_detaches_it(self):
        self.ctx.docs.update(
            constants.DEFICIENCIES_COLLECTION,
            "d1",
            {"state": "closed", "dueDates": {"x": {"dueDate": 5}}},
        )

        self.assertTrue(handle_event(self.ctx, "p1/d1/state/closed"))

        card = self.ctx.cards.cards["card-7"]
        self.assertEqual(card["idList"], "list-done")
        self.assertTrue(card["dueComplete"])
        self.assertEqual(self.ctx.docs.get(constants.SYSTEM_COLLECTION, SYSTEM_ID)["cards"], {})
        self.assertNotIn(
            "trelloCardURL", self.ctx.docs.get(constants.DEFICIENCIES_COLLECTION, "d1")
        )

    def test_card_deleted_on_board_clears_every_reference(self):
        self.ctx.cards.deleted.add("card-7")
        self.ctx.docs.set(
            constants.ARCHIVES_COLLECTION,
            "d1",
            {
                "_collection": "deficiencies",
                "trelloCardURL": "https://trello.test/c/card-7",
                "completedPhotos": {"ph2": {"trelloCardAttachment": "att2"}},
            },
        )

        self.assertTrue(handle_state_event(self.ctx, "p1", "d1", "pending"))

        self.assertEqual(self.ctx.docs.get(constants.SYSTEM_COLLECTION, SYSTEM_ID)["cards"], {})
        active = self.ctx.docs.get(constants.DEFICIENCIES_COLLECTION, "d1")
        self.assertNotIn("trelloCardURL", active)
        self.assertEqual(active["completedPhotos"], {"ph1": {"downloadURL": "x.jpg"}})
        archived = self.ctx.docs.get(constants.ARCHIVES_COLLECTION, "d1")
        self.assertNotIn("trelloCardURL", archived)
        self.assertEqual(archived["completedPhotos"], {"ph2": {}})

    def test_other_board_errors_propagate(self):
        with patch.object(
            self.ctx.cards, "comment_card", side_effect=CardServiceError("rate limited", 429)
        ):
            with self.assertRaises(CardServiceError):
                handle_state_event(self.ctx, "p1", "d1", "pending")
        self.assertEqual(
            self.ctx.docs.get(constants.SYSTEM_COLLECTION, SYSTEM_ID)["cards"], {"card-7": "d1"}
        )

    def test_cleanup_without_system_record(self):
        self.ctx.docs.delete(constants.SYSTEM_COLLECTION, SYSTEM_ID)
        cleanup_deleted_card(self.ctx, "p1", "d1", "card-7")
        self.assertNotIn(
            "trelloCardURL", self.ctx.docs.get(constants.DEFICIENCIES_COLLECTION, "d1")
        )

    def _update(self, **changes):
        return Updated(doc_id="d1", before=self.deficiency, after={**self.deficiency, **changes})

    def test_due_date_change_updates_card(self):
        self.deficiency["currentDueDate"] = "2026-03-01"

        self.assertTrue(sync_card_due_date(self.ctx, self._update(currentDueDate="2026-03-08")))
        self.assertEqual(self.ctx.cards.cards["card-7"]["due"], "2026-03-08")
        self.assertFalse(self.ctx.cards.cards["card-7"]["dueComplete"])

        self.ctx.cards.cards["card-7"].pop("due")
        self.assertFalse(sync_card_due_date(self.ctx, self._update(currentPlanToFix="Patch")))
        self.assertNotIn("due", self.ctx.cards.cards["card-7"])

    def test_deferred_and_go_back_due_dates(self):
        self.deficiency["currentDueDate"] = "2026-03-01"

        sync_card_due_date(
            self.ctx, self._update(state="deferred", currentDeferredDate="2026-04-01")
        )
        self.assertEqual(self.ctx.cards.cards["card-7"]["due"], "2026-04-01")

        sync_card_due_date(self.ctx, self._update(state="go-back"))
        self.assertIsNone(self.ctx.cards.cards["card-7"]["due"])

    def test_due_date_without_card(self):
        self.ctx.docs.set(constants.SYSTEM_COLLECTION, SYSTEM_ID, {"cards": {}})
        self.assertFalse(sync_card_due_date(self.ctx, self._update(currentDueDate="2026-03-08")))

    def test_new_completed_photo_is_attached(self):
        photos = {
            **self.deficiency["completedPhotos"],
            "ph2": {"downloadURL": "y.jpg", "createdAt": 2},
        }
        self.ctx.docs.update(constants.DEFICIENCIES_COLLECTION, "d1", {"completedPhotos": photos})
        event = self._update(completedPhotos=photos)

        self.assertTrue(publish_completed_photo(self.ctx, event))

        self.assertEqual(self.ctx.cards.cards["card-7"]["attachments"], ["y.jpg"])
        stored = self.ctx.docs.get(constants.DEFICIENCIES_COLLECTION, "d1")["completedPhotos"]
        self.assertEqual(stored["ph2"]["trelloCardAttachment"], "card-7-att-1")
        # The attachment write itself is not published again.
        marked = Updated(
            doc_id="d1", before=event.after, after={**event.after, "completedPhotos": stored}
        )
        self.assertFalse(publish_completed_photo(self.ctx, marked))
        self.assertEqual(len(self.ctx.cards.cards["card-7"]["attachments"]), 1)

    def test_photo_for_deleted_card_clears_references(self):
        self.ctx.cards.deleted.add("card-7")
        photos = {"ph2": {"downloadURL": "y.jpg", "createdAt": 2}}

        self.assertTrue(publish_completed_photo(self.ctx, self._update(completedPhotos=photos)))

        self.assertEqual(self.ctx.docs.get(constants.SYSTEM_COLLECTION, SYSTEM_ID)["cards"], {})
        self.assertNotIn(
            "trelloCardURL", self.ctx.docs.get(constants.DEFICIENCIES_COLLECTION, "d1")
        )

    def test_progress_note_is_commented(self):
        notes = {"n1": {"progressNote": "Part ordered", "user": "u1", "createdAt": 3}}

        self.assertTrue(comment_progress_note(self.ctx, self._update(progressNotes=notes)))

        self.assertEqual(
            self.ctx.cards.comments,
            [("card-7", "Progress Note: Part ordered\nBy Ann Lee (ann@example.com)")],
        )
        self.deficiency["progressNotes"] = notes
        self.assertFalse(comment_progress_note(self.ctx, self._update(state="completed")))

    def test_progress_note_author_must_exist(self):
        notes = {"n1": {"progressNote": "Part ordered", "user": "ghost", "createdAt": 3}}
        with self.assertRaises(RecordNotFoundError):
            comment_progress_note(self.ctx, self._update(progressNotes=notes))
        self.assertEqual(self.ctx.cards.comments, [])

    def test_latest_entry(self):
        self.assertEqual(latest_entry(None), (None, None))
        self.assertEqual(
            latest_entry({"a": {"createdAt": 2}, "b": {"createdAt": 1}}), ("a", {"createdAt": 2})
        )

    def test_create_card_links_deficiency(self):
        self.ctx.docs.set(
            constants.DEFICIENCIES_COLLECTION,
            "d2",
            {"property": "p1", "state": "requires-action", "itemTitle": "Door"},
        )

        card_id = create_deficiency_card(self.ctx, "p1", "d2")

        self.assertEqual(self.ctx.cards.cards[card_id]["idList"], "list-open")
        self.assertEqual(self.ctx.cards.cards[card_id]["name"], "Door")
        self.assertEqual(
            self.ctx.docs.get(constants.SYSTEM_COLLECTION, SYSTEM_ID)["cards"],
            {"card-7": "d1", card_id: "d2"},
        )
        self.assertEqual(
            self.ctx.docs.get(constants.DEFICIENCIES_COLLECTION, "d2")["trelloCardURL"],
            f"https://trello.test/c/{card_id}",
        )
        # Already linked deficiencies keep their card.
        self.assertEqual(create_deficiency_card(self.ctx, "p1", "d2"), card_id)

    def test_create_card_requires_open_list(self):
        self.ctx.docs.set(
            constants.INTEGRATIONS_COLLECTION, constants.trello_integration_id("p1"), {}
        )
        self.ctx.docs.set(constants.DEFICIENCIES_COLLECTION, "d2", {"property": "p1"})
        with self.assertRaises(PreconditionError):
            create_deficiency_card(self.ctx, "p1", "d2")


if __name__ == "__main__":
    unittest.main()
