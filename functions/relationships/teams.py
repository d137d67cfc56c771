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
Team membership kept in step with property reassignment.

Teams list their properties (`properties.{property}: true`) and users list
their teams with the properties they reach through each one
(`teams.{team}.{property}: true`, or `teams.{team}: true` for a team with no
properties). The teams collection is the source of truth.
"""

import logging
from typing import Optional

from google.cloud.firestore_v1 import DELETE_FIELD

from backend.context import HandlerContext
from shared import constants

logger = logging.getLogger(__name__)


def _team_members(ctx: HandlerContext, team_id: str) -> dict[str, dict]:
    return dict(
        ctx.docs.query(constants.USERS_COLLECTION, [(f"teams.{team_id}", "!=", None)])
    )


def sync_property_team(
    ctx: HandlerContext,
    property_id: str,
    before_team: Optional[str],
    after_team: Optional[str],
) -> int:
    """
    Moves a property from `before_team` to `after_team`.

    Team documents and every affected user are written in a single batch and
    each user receives exactly one merged update. Returns the number of users
    updated.
    """
    if before_team == after_team:
        return 0

    batch = ctx.docs.batch()
    user_updates: dict[str, dict] = {}

    if before_team:
        team = ctx.docs.get(constants.TEAMS_COLLECTION, before_team)
        if team is not None:
            batch.update(
                constants.TEAMS_COLLECTION,
                before_team,
                {f"properties.{property_id}": DELETE_FIELD},
            )
        for user_id, user in _team_members(ctx, before_team).items():
            reach = (user.get("teams") or {}).get(before_team)
            if not isinstance(reach, dict) or property_id not in reach:
                continue
            if set(reach) == {property_id}:
                # Still a member, just without properties.
                user_updates.setdefault(user_id, {})[f"teams.{before_team}"] = True
            else:
                user_updates.setdefault(user_id, {})[
                    f"teams.{before_team}.{property_id}"
                ] = DELETE_FIELD

    if after_team:
        team = ctx.docs.get(constants.TEAMS_COLLECTION, after_team)
        if team is None:
            logger.warning(
                "Property %s assigned to missing team %s", property_id, after_team
            )
        else:
            batch.update(
                constants.TEAMS_COLLECTION,
                after_team,
                {f"properties.{property_id}": True},
            )
            for user_id, user in _team_members(ctx, after_team).items():
                reach = (user.get("teams") or {}).get(after_team)
                if isinstance(reach, dict):
                    user_updates.setdefault(user_id, {})[
                        f"teams.{after_team}.{property_id}"
                    ] = True
                else:
                    user_updates.setdefault(user_id, {})[f"teams.{after_team}"] = {
                        property_id: True
                    }

    for user_id, updates in sorted(user_updates.items()):
        batch.update(constants.USERS_COLLECTION, user_id, updates)
    if len(batch):
        batch.commit()
    logger.info(
        "Property %s moved from team %s to %s (%d users)",
        property_id,
        before_team,
        after_team,
        len(user_updates),
    )
    return len(user_updates)


def expected_user_teams(ctx: HandlerContext, user: dict) -> dict:
    """A user's team map rebuilt from the current team documents."""
    expected = {}
    for team_id in sorted(user.get("teams") or {}):
        team = ctx.docs.get(constants.TEAMS_COLLECTION, team_id)
        if team is None:
            continue
        properties = {
            property_id: True
            for property_id, member in (team.get("properties") or {}).items()
            if member
        }
        expected[team_id] = properties or True
    return expected


def sync_user_teams(ctx: HandlerContext, user_id: str) -> bool:
    """
    Repairs a user's team map from the teams collection.

    Memberships of deleted teams are dropped. Returns True when the user was
    updated.
    """
    user = ctx.docs.get(constants.USERS_COLLECTION, user_id)
    if user is None:
        logger.warning("User %s not found; skipping team sync", user_id)
        return False

    current = user.get("teams") or {}
    expected = expected_user_teams(ctx, user)
    if current == expected:
        return False

    updates = {}
    for team_id in sorted(set(current) | set(expected)):
        if team_id not in expected:
            updates[f"teams.{team_id}"] = DELETE_FIELD
        elif current.get(team_id) != expected[team_id]:
            updates[f"teams.{team_id}"] = expected[team_id]
    ctx.docs.update(constants.USERS_COLLECTION, user_id, updates)
    logger.info("User %s: repaired teams %s", user_id, ", ".join(sorted(updates)))
    return True


def remove_property_from_teams(ctx: HandlerContext, property_id: str, team_id: Optional[str]) -> int:
    """Drops a deleted property from its team and the team's users."""
    return sync_property_team(ctx, property_id, team_id, None)


def on_team_deleted(ctx: HandlerContext, team_id: str, team: Optional[dict]) -> int:
    """
    Detaches a deleted team from its properties and users in one batch.

    Properties are found both through the team's own map and by their `team`
    field. Returns the number of users updated.
    """
    property_ids = {
        property_id
        for property_id, member in ((team or {}).get("properties") or {}).items()
        if member
    }
    property_ids.update(
        property_id
        for property_id, _ in ctx.docs.query(
            constants.PROPERTIES_COLLECTION, [("team", "==", team_id)]
        )
    )

    batch = ctx.docs.batch()
    detached = 0
    for property_id in sorted(property_ids):
        property_record = ctx.docs.get(constants.PROPERTIES_COLLECTION, property_id)
        if property_record is None or property_record.get("team") != team_id:
            continue
        detached += 1
        batch.update(constants.PROPERTIES_COLLECTION, property_id, {"team": DELETE_FIELD})

    members = sorted(_team_members(ctx, team_id))
    for user_id in members:
        batch.update(constants.USERS_COLLECTION, user_id, {f"teams.{team_id}": DELETE_FIELD})

    if len(batch):
        batch.commit()
    logger.info(
        "Team %s removed from %d properties and %d users",
        team_id,
        detached,
        len(members),
    )
    return len(members)
