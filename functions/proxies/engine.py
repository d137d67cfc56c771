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
Keeps proxy copies in the tree store in step with their source documents.

`sync_one` reacts to a single change event; `sync_all` rebuilds every target
from the source collection and removes orphans. Both recompute from current
source state and only write when the stored proxy differs, so re-running them
converges without extra writes.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from backend.context import HandlerContext
from backend.tree import join_path
from proxies.projector import ProxyPolicy, project
from shared.events import ChangeEvent, Deleted, after_of, before_of

logger = logging.getLogger(__name__)

# Extra fields folded into the record before projection, resolved by point reads.
Enricher = Callable[[HandlerContext, dict], dict]
MediaExtractor = Callable[[dict], list[str]]


@dataclass(frozen=True)
class ProxyTarget:
    """One tree location a source record is copied to.

    Unparented targets live at "{root}/{id}". Parented targets live at
    "{root}/{parent}/{child_segment}/{id}" for every parent id named by
    `parent_field`, which may hold a single id, a list of ids or a
    membership map.
    """

    name: str
    root: str
    policy: ProxyPolicy
    parent_field: Optional[str] = None
    child_segment: str = ""
    enrich: Optional[Enricher] = None

    def paths_for(self, record: Optional[dict], source_id: str) -> list[str]:
        if self.parent_field is None:
            return [join_path(self.root, source_id)]
        if record is None:
            return []
        return [
            join_path(self.root, parent_id, self.child_segment, source_id)
            for parent_id in parent_ids(record.get(self.parent_field))
        ]

    def container_paths(self, tree) -> list[str]:
        """Tree nodes whose children are this target's proxies."""
        if self.parent_field is None:
            return [self.root]
        return [
            join_path(self.root, parent_id, self.child_segment)
            for parent_id in tree.child_keys(self.root)
        ]


@dataclass(frozen=True)
class CascadeRule:
    """Documents in `collection` whose `field` holds the deleted source id."""

    collection: str
    field: str
    media: Optional[MediaExtractor] = None


@dataclass(frozen=True)
class ProxySource:
    name: str
    collection: str
    targets: tuple[ProxyTarget, ...] = ()
    cascade_paths: tuple[str, ...] = ()
    cascade_collections: tuple[CascadeRule, ...] = ()
    media: Optional[MediaExtractor] = None


@dataclass
class SyncResult:
    written: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return len(self.written) + len(self.deleted)

    def extend(self, other: "SyncResult") -> None:
        self.written.extend(other.written)
        self.deleted.extend(other.deleted)
        self.errors.extend(other.errors)


def parent_ids(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, dict):
        return sorted(k for k, v in value.items() if v)
    if isinstance(value, (list, tuple)):
        return sorted({v for v in value if isinstance(v, str) and v})
    return []


def _expected(
    ctx: HandlerContext, target: ProxyTarget, source_id: str, record: Optional[dict]
) -> dict[str, Optional[dict]]:
    if record is None:
        return {}
    paths = target.paths_for(record, source_id)
    if not paths:
        return {}
    if target.enrich:
        record = {**record, **target.enrich(ctx, record)}
    proxy = project(record, target.policy)
    return {path: proxy for path in paths}


def _write_path(
    ctx: HandlerContext, path: str, proxy: Optional[dict], result: SyncResult
) -> None:
    current = ctx.tree.get(path)
    if proxy is None:
        if current is not None:
            ctx.tree.delete(path)
            result.deleted.append(path)
        return
    if current != proxy:
        # Full overwrite so fields dropped from the source disappear too.
        ctx.tree.set(path, proxy)
        result.written.append(path)


def _delete_path(ctx: HandlerContext, path: str, result: SyncResult) -> None:
    if ctx.tree.get(path) is not None:
        ctx.tree.delete(path)
        result.deleted.append(path)


def _record_error(result: SyncResult, label: str, error: Exception) -> None:
    logger.exception("Proxy sync failed for %s: %s", label, error)
    result.errors.append(f"{label}: {error}")


def sync_one(
    ctx: HandlerContext, source: ProxySource, source_id: str, event: ChangeEvent
) -> SyncResult:
    """
    Applies one change of a source record to every proxy target.

    Proxies at paths the previous version pointed to, and the new version no
    longer does (e.g. a reassigned parent), are removed. A deleted source
    removes every target plus its cascade paths, documents and media.
    """
    result = SyncResult()
    before = before_of(event)
    after = after_of(event)

    if isinstance(event, Deleted) or after is None:
        _remove_source(ctx, source, source_id, before, result)
        return result

    for target in source.targets:
        try:
            expected = _expected(ctx, target, source_id, after)
            stale = set(target.paths_for(before, source_id)) - set(expected)
            for path in sorted(stale):
                _delete_path(ctx, path, result)
            for path, proxy in expected.items():
                _write_path(ctx, path, proxy, result)
        except Exception as e:
            _record_error(result, f"{target.name}/{source_id}", e)

    if result.writes:
        logger.info(
            "%s/%s: wrote %d and removed %d proxies",
            source.name,
            source_id,
            len(result.written),
            len(result.deleted),
        )
    return result


def _remove_source(
    ctx: HandlerContext,
    source: ProxySource,
    source_id: str,
    before: Optional[dict],
    result: SyncResult,
) -> None:
    for target in source.targets:
        try:
            for path in target.paths_for(before, source_id):
                _delete_path(ctx, path, result)
        except Exception as e:
            _record_error(result, f"{target.name}/{source_id}", e)

    for template in source.cascade_paths:
        path = template.format(id=source_id)
        try:
            _delete_path(ctx, path, result)
        except Exception as e:
            _record_error(result, path, e)

    media: list[str] = []
    if before and source.media:
        media.extend(source.media(before))

    for rule in source.cascade_collections:
        try:
            children = ctx.docs.query(rule.collection, [(rule.field, "==", source_id)])
        except Exception as e:
            _record_error(result, f"{rule.collection}?{rule.field}={source_id}", e)
            continue
        for child_id, child in children:
            try:
                ctx.docs.delete(rule.collection, child_id)
                result.deleted.append(f"{rule.collection}/{child_id}")
                if rule.media:
                    media.extend(rule.media(child))
            except Exception as e:
                _record_error(result, f"{rule.collection}/{child_id}", e)

    for url in media:
        try:
            ctx.storage.delete_file(url)
        except Exception as e:
            # Missing blobs are common after partial cleanups; keep going.
            logger.warning("%s/%s: could not delete %s: %s", source.name, source_id, url, e)

    logger.info(
        "%s/%s deleted: removed %d proxies and dependents",
        source.name,
        source_id,
        len(result.deleted),
    )


def sync_all(ctx: HandlerContext, source: ProxySource) -> SyncResult:
    """
    Rebuilds every target from the full source collection, then deletes
    orphaned proxies whose source is gone or no longer points at them.
    """
    result = SyncResult()
    expected_paths: dict[str, set[str]] = {t.name: set() for t in source.targets}
    failed_ids: set[str] = set()

    source_ids = ctx.docs.list_ids(source.collection)
    for source_id in source_ids:
        try:
            record = ctx.docs.get(source.collection, source_id)
        except Exception as e:
            _record_error(result, f"{source.collection}/{source_id}", e)
            failed_ids.add(source_id)
            continue
        if record is None:
            continue

        for target in source.targets:
            try:
                for path, proxy in _expected(ctx, target, source_id, record).items():
                    _write_path(ctx, path, proxy, result)
                    if proxy is not None:
                        expected_paths[target.name].add(path)
            except Exception as e:
                _record_error(result, f"{target.name}/{source_id}", e)
                failed_ids.add(source_id)

    for target in source.targets:
        try:
            for container in target.container_paths(ctx.tree):
                for key in ctx.tree.child_keys(container):
                    path = join_path(container, key)
                    if path in expected_paths[target.name] or key in failed_ids:
                        continue
                    _delete_path(ctx, path, result)
        except Exception as e:
            _record_error(result, f"{target.name} orphans", e)

    logger.info(
        "%s: synced %d records (%d writes, %d errors)",
        source.name,
        len(source_ids),
        result.writes,
        len(result.errors),
    )
    return result