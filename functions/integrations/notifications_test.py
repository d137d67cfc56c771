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
from integrations.notifications import (
    create_state_change_notification,
    property_recipients,
    publish_push_notifications,
    publish_slack_notifications,
)
from shared import constants

NOW = 1_700_000_000


class NotificationsTest(unittest.TestCase):

    def setUp(self):
        self.ctx = in_memory_context(clock=lambda: NOW)
        docs = self.ctx.docs
        docs.set(constants.PROPERTIES_COLLECTION, "p1", {"name": "Alpha", "team": "t1"})
        docs.set(constants.USERS_COLLECTION, "admin1", {"admin": True})
        docs.set(constants.USERS_COLLECTION, "u1", {"teams": {"t1": {"p1": True}}})
        docs.set(constants.USERS_COLLECTION, "u2", {"teams": {"t2": True}})
        docs.set(constants.REGISTRATION_TOKENS_COLLECTION, "admin1", {"tok-a": NOW})
        docs.set(constants.REGISTRATION_TOKENS_COLLECTION, "u1", {"tok-b": NOW, "tok-c": NOW})

    def _notify(self, creator_id=None):
        return create_state_change_notification(
            self.ctx,
            property_id="p1",
            deficiency_id="d1",
            deficiency={"itemTitle": "Sink"},
            previous_state="requires-action",
            current_state="pending",
            creator_id=creator_id,
        )

    def test_recipients_are_admins_and_team_members(self):
        property_record = self.ctx.docs.get(constants.PROPERTIES_COLLECTION, "p1")
        self.assertEqual(property_recipients(self.ctx, property_record), ["admin1", "u1"])
        self.assertEqual(
            property_recipients(self.ctx, property_record, exclude="u1"), ["admin1"]
        )

    def test_creates_unpublished_notification(self):
        notification_id = self._notify(creator_id="u1")

        record = self.ctx.docs.get(constants.NOTIFICATIONS_COLLECTION, notification_id)
        self.assertEqual(record["title"], "Alpha")
        self.assertEqual(record["summary"], "Sink: requires-action → pending")
        self.assertEqual(record["creator"], "u1")
        self.assertEqual(record["publishedMediums"], {"slack": False, "push": False})
        self.assertEqual(record["unpublishedPush"], 1)
        self.assertEqual(
            record["push"],
            {"admin1": {"title": "Alpha", "message": record["summary"], "createdAt": NOW}},
        )

    def test_missing_property_creates_nothing(self):
        self.ctx.docs.delete(constants.PROPERTIES_COLLECTION, "p1")
        self.assertIsNone(self._notify())
        self.assertEqual(self.ctx.docs.query(constants.NOTIFICATIONS_COLLECTION, []), [])

    def test_publish_push_sends_to_every_device(self):
        notification_id = self._notify()

        report = publish_push_notifications(self.ctx)

        self.assertEqual(report.published, [notification_id])
        self.assertEqual(
            sorted(tokens for tokens, _ in self.ctx.messaging.sent),
            [["tok-a"], ["tok-b", "tok-c"]],
        )
        record = self.ctx.docs.get(constants.NOTIFICATIONS_COLLECTION, notification_id)
        self.assertEqual(record["push"], {})
        self.assertEqual(record["unpublishedPush"], 0)
        self.assertTrue(record["publishedMediums"]["push"])

        # Nothing left to send on the next run.
        self.assertEqual(publish_push_notifications(self.ctx).published, [])

    def test_users_without_devices_are_dropped(self):
        self.ctx.docs.delete(constants.REGISTRATION_TOKENS_COLLECTION, "u1")
        notification_id = self._notify()

        publish_push_notifications(self.ctx, notification_id)

        self.assertEqual(
            self.ctx.messaging.sent,
            [
                (
                    ["tok-a"],
                    {"title": "Alpha", "body": "Sink: requires-action → pending", "icon": ""},
                )
            ],
        )
        record = self.ctx.docs.get(constants.NOTIFICATIONS_COLLECTION, notification_id)
        self.assertEqual(record["unpublishedPush"], 0)

    def test_failing_recipient_stays_pending(self):
        self.ctx.messaging.failing_tokens.update({"tok-b", "tok-c"})
        notification_id = self._notify()

        with self.assertLogs("integrations.notifications", level="ERROR"):
            report = publish_push_notifications(self.ctx)

        self.assertEqual(report.failed, [notification_id])
        record = self.ctx.docs.get(constants.NOTIFICATIONS_COLLECTION, notification_id)
        self.assertEqual(list(record["push"]), ["u1"])
        self.assertEqual(record["unpublishedPush"], 1)
        self.assertFalse(record["publishedMediums"]["push"])
        self.assertEqual(len(self.ctx.messaging.sent), 1)

    def test_publish_slack_marks_sent_notifications(self):
        self.ctx.docs.set(
            constants.INTEGRATIONS_COLLECTION,
            constants.SLACK_INTEGRATION_ID,
            {"defaultChannelName": "#deficiencies"},
        )
        first = self._notify()
        second = self._notify()

        with patch.object(
            self.ctx.chat,
            "post_message",
            side_effect=[RuntimeError("channel archived"), "1.0001"],
        ):
            with self.assertLogs("integrations.notifications", level="ERROR"):
                report = publish_slack_notifications(self.ctx)

        self.assertEqual(len(report.failed), 1)
        self.assertEqual(len(report.published), 1)
        self.assertEqual(sorted(report.failed + report.published), sorted([first, second]))
        self.assertTrue(
            self.ctx.docs.get(constants.NOTIFICATIONS_COLLECTION, report.published[0])[
                "publishedMediums"
            ]["slack"]
        )
        self.assertFalse(
            self.ctx.docs.get(constants.NOTIFICATIONS_COLLECTION, report.failed[0])[
                "publishedMediums"
            ]["slack"]
        )

    def test_publish_slack_without_channel(self):
        self._notify()
        report = publish_slack_notifications(self.ctx)
        self.assertEqual(report.published, [])
        self.assertEqual(self.ctx.chat.messages, [])


if __name__ == "__main__":
    unittest.main()
