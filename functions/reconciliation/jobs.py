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
Periodic repair of everything the change triggers maintain.

Every job recomputes from current source state, so it converges regardless of
missed or reordered triggers and a second run writes nothing. A failing record
is logged and counted; the job moves on to the next one.
"""

import logging
from dataclasses import dataclass, field

from aggregation.property_meta import recompute_property_meta
from backend.context import HandlerContext
from proxies.engine import sync_all
from proxies.targets import INSPECTION_SOURCE, TEMPLATE_SOURCE
from relationships.teams import sync_user_teams
from shared import constants

logger = logging.getLogger(__name__)


@dataclass
class JobReport:
    name: str
    processed: int = 0
    changed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _proxy_job(ctx: HandlerContext, name: str, source) -> JobReport:
    result = sync_all(ctx, source)
    return JobReport(
        name=name,
        processed=len(ctx.docs.list_ids(source.collection)),
        changed=result.writes,
        errors=result.errors,
    )


def reconcile_inspection_proxies(ctx: HandlerContext) -> JobReport:
    return _proxy_job(ctx, "inspection_proxies", INSPECTION_SOURCE)


def reconcile_template_proxies(ctx: HandlerContext) -> JobReport:
    return _proxy_job(ctx, "template_proxies", TEMPLATE_SOURCE)


def reconcile_property_metas(ctx: HandlerContext) -> JobReport:
    """Recomputes the counters of every property."""
    report = JobReport(name="property_metas")
    for property_id in ctx.docs.list_ids(constants.PROPERTIES_COLLECTION):
        report.processed += 1
        try:
            before = ctx.docs.get(constants.PROPERTIES_COLLECTION, property_id)
            recompute_property_meta(ctx, property_id)
            if ctx.docs.get(constants.PROPERTIES_COLLECTION, property_id) != before:
                report.changed += 1
        except Exception as e:
            logger.exception("Meta reconciliation failed for property %s: %s", property_id, e)
            report.errors.append(property_id)
    return report


def reconcile_user_teams(ctx: HandlerContext) -> JobReport:
    """Rebuilds every user's team map from the teams collection."""
    report = JobReport(name="user_teams")
    for user_id in ctx.docs.list_ids(constants.USERS_COLLECTION):
        report.processed += 1
        try:
            if sync_user_teams(ctx, user_id):
                report.changed += 1
        except Exception as e:
            logger.exception("Team reconciliation failed for user %s: %s", user_id, e)
            report.errors.append(user_id)
    return report


JOBS = (
    reconcile_inspection_proxies,
    reconcile_template_proxies,
    reconcile_property_metas,
    reconcile_user_teams,
)


def run_all(ctx: HandlerContext) -> list[JobReport]:
    """Runs every reconciliation job; one job failing outright does not stop the rest."""
    reports = []
    for job in JOBS:
        try:
            report = job(ctx)
        except Exception as e:
            logger.exception("Reconciliation job %s failed: %s", job.__name__, e)
            report = JobReport(name=job.__name__, errors=[str(e)])
        logger.info(
            "Reconciliation %s: %d processed, %d changed, %d errors",
            report.name,
            report.processed,
            report.changed,
            len(report.errors),
        )
        reports.append(report)
    return reports
