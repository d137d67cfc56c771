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

from backend.context import in_memory_context
from deficiencies.archive import on_deficiency_archive_toggle
from shared import constants
from shared.events import Updated


class ArchiveTest(unittest.TestCase):

    def setUp(self):
        self.ctx = in_memory_context()
        self.ctx.docs.set(constants.PROPERTIES_COLLECTION, "p1", {"name": "Alpha"})
        self.deficiency = {"property": "p1", "inspection": "i1", "item": "sink", "state": "closed"}
        self.ctx.docs.set(
            constants.DEFICIENCIES_COLLECTION, "d1", {**self.deficiency, "archive": True}
        )
        self.ctx.docs.set(
            constants.SYSTEM_COLLECTION,
            constants.trello_system_id("p1"),
            {"cards": {"card-9": "d1"}},
        )

    def _archive_event(self):
        return Updated(
            doc_id="d1", before=self.deficiency, after={**self.deficiency, "archive": True}
        )

    def test_moves_deficiency_to_archive_and_archives_card(self):
        self.ctx.cards.cards["card-9"] = {"idList": "done"}

        self.assertTrue(on_deficiency_archive_toggle(self.ctx, self._archive_event()))

        self.assertIsNone(self.ctx.docs.get(constants.DEFICIENCIES_COLLECTION, "d1"))
        archived = self.ctx.docs.get(constants.ARCHIVES_COLLECTION, "d1")
        self.assertEqual(archived["_collection"], "deficiencies")
        self.assertTrue(archived["archive"])
        self.assertEqual(archived["item"], "sink")
        self.assertTrue(self.ctx.cards.cards["card-9"]["closed"])
        self.assertEqual(
            self.ctx.docs.get(constants.PROPERTIES_COLLECTION, "p1")["numOfInspections"], 0
        )

    def test_card_already_deleted_still_archives(self):
        self.ctx.cards.deleted.add("card-9")
        self.ctx.docs.update(
            constants.DEFICIENCIES_COLLECTION,
            "d1",
            {
                "trelloCardURL": "https://trello.test/c/card-9",
                "completedPhotos": {"ph1": {"downloadURL": "x.jpg", "trelloCardAttachment": "a1"}},
            },
        )

        self.assertTrue(on_deficiency_archive_toggle(self.ctx, self._archive_event()))

        archived = self.ctx.docs.get(constants.ARCHIVES_COLLECTION, "d1")
        self.assertNotIn("trelloCardURL", archived)
        self.assertEqual(archived["completedPhotos"], {"ph1": {"downloadURL": "x.jpg"}})
        system = self.ctx.docs.get(constants.SYSTEM_COLLECTION, constants.trello_system_id("p1"))
        self.assertEqual(system["cards"], {})
        self.assertIsNone(self.ctx.docs.get(constants.DEFICIENCIES_COLLECTION, "d1"))

    def test_only_reacts_to_archive_being_set(self):
        already = Updated(
            doc_id="d1",
            before={**self.deficiency, "archive": True},
            after={**self.deficiency, "archive": True, "state": "closed"},
        )
        self.assertFalse(on_deficiency_archive_toggle(self.ctx, already))
        untouched = Updated(doc_id="d1", before=self.deficiency, after=self.deficiency)
        self.assertFalse(on_deficiency_archive_toggle(self.ctx, untouched))
        self.assertIsNotNone(self.ctx.docs.get(constants.DEFICIENCIES_COLLECTION, "d1"))


if __name__ == "__main__":
    unittest.main()
