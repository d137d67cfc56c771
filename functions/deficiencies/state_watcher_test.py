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
from deficiencies.state_watcher import latest_history_entry, on_deficiency_state_update
from shared import constants
from shared.events import Created, Updated

NOW = 1_700_000_000


def _deficiency(state, **extra):
    record = {
        "property": "p1",
        "inspection": "i1",
        "item": "sink",
        "itemTitle": "Sink",
        "state": state,
    }
    record.update(extra)
    return record


class StateWatcherTest(unittest.TestCase):

    def setUp(self):
        self.ctx = in_memory_context(clock=lambda: NOW)
        self.ctx.docs.set(
            constants.PROPERTIES_COLLECTION, "p1", {"name": "Alpha", "team": "t1"}
        )
        self.ctx.docs.set(
            constants.INSPECTIONS_COLLECTION,
            "i1",
            {
                "property": "p1",
                "inspectionCompleted": True,
                "template": {
                    "trackDeficientItems": True,
                    "items": {
                        "sink": {
                            "mainInputType": "twoactions_checkmarkx",
                            "mainInputSelection": 1,
                        }
                    },
                },
            },
        )
        self.ctx.docs.set(constants.USERS_COLLECTION, "admin", {"admin": True})
        self.ctx.docs.set(constants.USERS_COLLECTION, "member", {"teams": {"t1": {"p1": True}}})
        self.ctx.docs.set(constants.USERS_COLLECTION, "outsider", {"teams": {"t2": True}})

    def _notifications(self):
        return self.ctx.docs.query(constants.NOTIFICATIONS_COLLECTION)

    def test_latest_history_entry(self):
        deficiency = _deficiency(
            "pending",
            stateHistory={
                "h1": {"state": "requires-action", "user": "u1", "createdAt": 1},
                "h2": {"state": "pending", "user": "u2", "createdAt": 2},
            },
        )
        self.assertEqual(latest_history_entry(deficiency).user, "u2")
        self.assertIsNone(latest_history_entry(_deficiency("pending")))

    def test_transition_updates_counters_notifies_and_queues(self):
        self.ctx.docs.set(
            constants.DEFICIENCIES_COLLECTION, "d1", _deficiency("completed")
        )
        event = Updated(
            doc_id="d1",
            before=_deficiency("pending"),
            after=_deficiency(
                "completed",
                stateHistory={"h1": {"state": "completed", "user": "member", "createdAt": NOW}},
            ),
        )

        self.assertTrue(on_deficiency_state_update(self.ctx, event))

        property_record = self.ctx.docs.get(constants.PROPERTIES_COLLECTION, "p1")
        self.assertEqual(property_record["numOfFollowUpActionsForDeficientItems"], 1)
        self.assertEqual(self.ctx.queue.items, ["p1/d1/state/completed"])

        [(_, notification)] = self._notifications()
        self.assertEqual(notification["title"], "Alpha")
        self.assertEqual(notification["summary"], "Sink: pending → completed")
        self.assertEqual(notification["creator"], "member")
        # The actor is not notified about their own change.
        self.assertEqual(sorted(notification["push"]), ["admin"])
        self.assertEqual(notification["unpublishedPush"], 1)
        self.assertFalse(notification["publishedMediums"]["slack"])

    def test_same_category_skips_recompute(self):
        event = Updated(
            doc_id="d1", before=_deficiency("requires-action"), after=_deficiency("overdue")
        )

        self.assertTrue(on_deficiency_state_update(self.ctx, event))

        self.assertNotIn(
            "numOfDeficientItems", self.ctx.docs.get(constants.PROPERTIES_COLLECTION, "p1")
        )
        self.assertEqual(self.ctx.queue.items, ["p1/d1/state/overdue"])

    def test_ignores_other_changes(self):
        unchanged = Updated(
            doc_id="d1",
            before=_deficiency("pending"),
            after=_deficiency("pending", currentPlanToFix="Replace"),
        )
        self.assertFalse(on_deficiency_state_update(self.ctx, unchanged))
        self.assertFalse(
            on_deficiency_state_update(self.ctx, Created(doc_id="d1", after=_deficiency("pending")))
        )
        self.assertEqual(self._notifications(), [])
        self.assertEqual(self.ctx.queue.items, [])


if __name__ == "__main__":
    unittest.main()
