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

from aggregation.property_meta import (
    compute_property_meta,
    latest_completed,
    recompute_property_meta,
)
from backend.context import in_memory_context
from shared import constants
from shared.types import Inspection

T1 = 1_700_000_000
T2 = T1 - 86_400
T3 = T1 + 86_400


def _tracking_template():
    return {
        "trackDeficientItems": True,
        "items": {
            "itemA": {"mainInputType": "twoactions_checkmarkx", "mainInputSelection": 1},
            "itemB": {"mainInputType": "twoactions_checkmarkx", "mainInputSelection": 1},
            "itemC": {"mainInputType": "twoactions_checkmarkx", "mainInputSelection": 0},
        },
    }


class PropertyMetaTest(unittest.TestCase):

    def setUp(self):
        self.ctx = in_memory_context()
        self.ctx.docs.set(constants.PROPERTIES_COLLECTION, "p1", {"name": "Alpha"})

    def _inspection(self, inspection_id, **data):
        self.ctx.docs.set(
            constants.INSPECTIONS_COLLECTION, inspection_id, {"property": "p1", **data}
        )

    def test_latest_completed_inspection_wins(self):
        self._inspection("i1", inspectionCompleted=True, score=65, creationDate=T1)
        self._inspection("i2", inspectionCompleted=True, score=25, creationDate=T2)
        self._inspection("i3", inspectionCompleted=False, score=90, creationDate=T3)

        meta = recompute_property_meta(self.ctx, "p1")

        self.assertEqual(meta.num_of_inspections, 2)
        property_record = self.ctx.docs.get(constants.PROPERTIES_COLLECTION, "p1")
        self.assertEqual(property_record["numOfInspections"], 2)
        self.assertEqual(property_record["lastInspectionScore"], 65)
        self.assertEqual(property_record["lastInspectionDate"], T1)

    def test_ties_break_on_inspection_id(self):
        inspections = [
            Inspection.from_record("b", {"inspectionCompleted": True, "creationDate": T1}),
            Inspection.from_record("a", {"inspectionCompleted": True, "creationDate": T1}),
        ]
        self.assertEqual(latest_completed(inspections).id, "b")

    def test_deficiency_counts_by_category(self):
        self._inspection(
            "i1",
            inspectionCompleted=True,
            score=50,
            creationDate=T1,
            template=_tracking_template(),
        )
        self.ctx.docs.set(
            constants.DEFICIENCIES_COLLECTION,
            "d1",
            {"property": "p1", "inspection": "i1", "item": "itemA", "state": "completed"},
        )
        self.ctx.docs.set(
            constants.DEFICIENCIES_COLLECTION,
            "d2",
            {"property": "p1", "inspection": "i1", "item": "itemB", "state": "pending"},
        )

        meta = recompute_property_meta(self.ctx, "p1")

        self.assertEqual(meta.num_of_deficient_items, 2)
        self.assertEqual(meta.num_of_follow_up_actions_for_deficient_items, 1)
        self.assertEqual(meta.num_of_required_actions_for_deficient_items, 0)

    def test_one_requires_action_and_one_follow_up(self):
        inspection = Inspection.from_record(
            "i1", {"inspectionCompleted": True, "template": _tracking_template()}
        )
        meta = compute_property_meta(
            [inspection], {("i1", "itemA"): "requires-action", ("i1", "itemB"): "completed"}
        )
        self.assertEqual(meta.num_of_deficient_items, 2)
        self.assertEqual(meta.num_of_required_actions_for_deficient_items, 1)
        self.assertEqual(meta.num_of_follow_up_actions_for_deficient_items, 1)

    def test_closed_deficiencies_leave_the_total(self):
        self._inspection(
            "i1", inspectionCompleted=True, creationDate=T1, template=_tracking_template()
        )
        self.ctx.docs.set(
            constants.DEFICIENCIES_COLLECTION,
            "d1",
            {"property": "p1", "inspection": "i1", "item": "itemA", "state": "requires-action"},
        )
        self.ctx.docs.set(
            constants.DEFICIENCIES_COLLECTION,
            "d2",
            {"property": "p1", "inspection": "i1", "item": "itemB", "state": "closed"},
        )

        recompute_property_meta(self.ctx, "p1")

        property_record = self.ctx.docs.get(constants.PROPERTIES_COLLECTION, "p1")
        self.assertEqual(property_record["numOfDeficientItems"], 1)
        self.assertEqual(property_record["numOfRequiredActionsForDeficientItems"], 1)

        self.ctx.docs.update(constants.DEFICIENCIES_COLLECTION, "d1", {"state": "closed"})
        recompute_property_meta(self.ctx, "p1")

        property_record = self.ctx.docs.get(constants.PROPERTIES_COLLECTION, "p1")
        self.assertEqual(property_record["numOfDeficientItems"], 0)
        self.assertEqual(property_record["numOfRequiredActionsForDeficientItems"], 0)

    def test_items_without_deficiency_record_require_action(self):
        inspection = Inspection.from_record(
            "i1", {"inspectionCompleted": True, "template": _tracking_template()}
        )
        meta = compute_property_meta([inspection], {})
        self.assertEqual(meta.num_of_deficient_items, 2)
        self.assertEqual(meta.num_of_required_actions_for_deficient_items, 2)

    def test_unchanged_counters_write_nothing(self):
        self._inspection("i1", inspectionCompleted=True, score=65, creationDate=T1)
        recompute_property_meta(self.ctx, "p1")
        writes = self.ctx.docs.write_count

        recompute_property_meta(self.ctx, "p1")

        self.assertEqual(self.ctx.docs.write_count, writes)

    def test_last_inspection_fields_removed_without_completed_inspections(self):
        self.ctx.docs.set(
            constants.PROPERTIES_COLLECTION,
            "p1",
            {"name": "Alpha", "lastInspectionScore": 80, "lastInspectionDate": T2},
        )
        self._inspection("i1", inspectionCompleted=False, score=90, creationDate=T3)

        recompute_property_meta(self.ctx, "p1")

        property_record = self.ctx.docs.get(constants.PROPERTIES_COLLECTION, "p1")
        self.assertNotIn("lastInspectionScore", property_record)
        self.assertNotIn("lastInspectionDate", property_record)
        self.assertEqual(property_record["numOfInspections"], 0)

    def test_missing_property(self):
        with self.assertLogs("aggregation.property_meta", level="WARNING"):
            self.assertIsNone(recompute_property_meta(self.ctx, "missing"))


if __name__ == "__main__":
    unittest.main()
