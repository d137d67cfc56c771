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
Notification records for deficiency transitions and their publishing to push and chat.

A notification is written once with a per-user push map; the scheduled
publishers then fan it out and mark what was delivered. Each record and each
push message is isolated so one failure never blocks the rest.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from google.cloud.firestore_v1 import DELETE_FIELD

from backend.context import HandlerContext
from shared import constants

logger = logging.getLogger(__name__)


@dataclass
class PublishReport:
    published: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def property_recipients(
    ctx: HandlerContext, property_record: dict, exclude: Optional[str] = None
) -> list[str]:
    """Admins plus every member of the property's team."""
    user_ids = {
        user_id
        for user_id, _ in ctx.docs.query(constants.USERS_COLLECTION, [("admin", "==", True)])
    }
    team_id = property_record.get("team")
    if team_id:
        user_ids.update(
            user_id
            for user_id, _ in ctx.docs.query(
                constants.USERS_COLLECTION, [(f"teams.{team_id}", "!=", None)]
            )
        )
    user_ids.discard(exclude)
    return sorted(user_ids)


def create_state_change_notification(
    ctx: HandlerContext,
    *,
    property_id: str,
    deficiency_id: str,
    deficiency: dict,
    previous_state: str,
    current_state: str,
    creator_id: Optional[str] = None,
) -> Optional[str]:
    """Writes an unpublished notification announcing a deficiency transition."""
    property_record = ctx.docs.get(constants.PROPERTIES_COLLECTION, property_id)
    if property_record is None:
        logger.warning(
            "Property %s not found; no notification for deficiency %s",
            property_id,
            deficiency_id,
        )
        return None

    now = ctx.now()
    title = property_record.get("name") or property_id
    item_title = deficiency.get("itemTitle") or deficiency.get("item") or deficiency_id
    summary = f"{item_title}: {previous_state} → {current_state}"
    url = ctx.settings.deficiency_url(property_id, deficiency_id)
    markdown_body = (
        f"Deficient item *{item_title}* moved from `{previous_state}` "
        f"to `{current_state}`\n{url}"
    )
    push = {
        user_id: {"title": title, "message": summary, "createdAt": now}
        for user_id in property_recipients(ctx, property_record, exclude=creator_id)
    }

    notification_id = ctx.docs.new_id(constants.NOTIFICATIONS_COLLECTION)
    record = {
        "title": title,
        "summary": summary,
        "markdownBody": markdown_body,
        "property": property_id,
        "createdAt": now,
        "publishedMediums": {"slack": False, "push": not push},
        "unpublishedPush": len(push),
        "push": push,
    }
    if creator_id:
        record["creator"] = creator_id
    ctx.docs.set(constants.NOTIFICATIONS_COLLECTION, notification_id, record)
    logger.info(
        "Notification %s created for deficiency %s (%d push recipients)",
        notification_id,
        deficiency_id,
        len(push),
    )
    return notification_id


def _device_tokens(ctx: HandlerContext, user_id: str) -> list[str]:
    tokens = ctx.docs.get(constants.REGISTRATION_TOKENS_COLLECTION, user_id) or {}
    return sorted(tokens)


def _publish_push(ctx: HandlerContext, notification_id: str, notification: dict) -> int:
    """Sends each pending push message; returns how many remain unpublished."""
    pending = notification.get("push") or {}
    updates = {}
    for user_id, message in pending.items():
        tokens = _device_tokens(ctx, user_id)
        if tokens:
            try:
                ctx.messaging.send_to_device(
                    tokens,
                    {
                        "title": message.get("title"),
                        "body": message.get("message"),
                        "icon": ctx.settings.push_icon_url,
                    },
                )
            except Exception as e:
                logger.exception(
                    "Push for notification %s to user %s failed: %s",
                    notification_id,
                    user_id,
                    e,
                )
                continue
        else:
            logger.info("User %s has no registered devices; dropping push", user_id)
        updates[f"push.{user_id}"] = DELETE_FIELD

    remaining = len(pending) - len(updates)
    updates["unpublishedPush"] = remaining
    updates["publishedMediums.push"] = remaining == 0
    ctx.docs.update(constants.NOTIFICATIONS_COLLECTION, notification_id, updates)
    return remaining


def publish_push_notifications(
    ctx: HandlerContext, notification_id: Optional[str] = None
) -> PublishReport:
    """Publishes pending push messages of one notification, or of all of them."""
    report = PublishReport()
    if notification_id:
        record = ctx.docs.get(constants.NOTIFICATIONS_COLLECTION, notification_id)
        candidates = [(notification_id, record)] if record else []
    else:
        candidates = ctx.docs.query(
            constants.NOTIFICATIONS_COLLECTION, [("unpublishedPush", ">", 0)]
        )

    for candidate_id, notification in candidates:
        try:
            remaining = _publish_push(ctx, candidate_id, notification)
        except Exception as e:
            logger.exception("Publishing notification %s failed: %s", candidate_id, e)
            report.failed.append(candidate_id)
            continue
        if remaining:
            report.failed.append(candidate_id)
        else:
            report.published.append(candidate_id)
    return report


def publish_slack_notifications(ctx: HandlerContext) -> PublishReport:
    """Posts every notification not yet sent to the configured chat channel."""
    report = PublishReport()
    integration = ctx.docs.get(
        constants.INTEGRATIONS_COLLECTION, constants.SLACK_INTEGRATION_ID
    )
    channel = (integration or {}).get("defaultChannelName")
    if not channel:
        logger.info("No chat channel configured; skipping notification publishing")
        return report

    for notification_id, notification in ctx.docs.query(
        constants.NOTIFICATIONS_COLLECTION, [("publishedMediums.slack", "==", False)]
    ):
        text = f"*{notification.get('title', '')}*\n" + (
            notification.get("markdownBody") or notification.get("summary") or ""
        )
        try:
            ctx.chat.post_message(channel, text)
            ctx.docs.update(
                constants.NOTIFICATIONS_COLLECTION,
                notification_id,
                {"publishedMediums.slack": True},
            )
        except Exception as e:
            logger.exception("Chat publish of notification %s failed: %s", notification_id, e)
            report.failed.append(notification_id)
            continue
        report.published.append(notification_id)
    return report
