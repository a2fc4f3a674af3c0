"""Redis-backed lease, binding and event stores for distributed mode.

These keep the same synchronous interfaces as the JSON-file stores. Active
holders live in one hash (resource id -> lease id) so that ``claim`` can
check and write exclusivity inside a single WATCH/MULTI transaction.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from pydantic import ValidationError
from redis import Redis
from redis.exceptions import WatchError

from ..errors import NotFound
from ..events import LeaseEvent
from ..models import Lease, LeaseAttrs, LeaseStatus, ResourceBinding, utc_now

logger = logging.getLogger(__name__)


def _redis_from_url(url: str) -> Redis:
    return Redis.from_url(url, decode_responses=True)


@dataclass(frozen=True)
class RedisStoreConfig:
    url: str
    key_prefix: str = "serverlease:"

    def key(self, *parts: str) -> str:
        return self.key_prefix + ":".join(parts)


class RedisEventStore:
    """Lease event history backed by Redis lists + per-lease INCR sequence."""

    def __init__(self, config: RedisStoreConfig, *, client: Redis | None = None):
        self._config = config
        self._redis = client or _redis_from_url(config.url)

    def ensure_base_dir(self) -> None:
        return None

    def _seq_key(self, lease_id: int) -> str:
        return self._config.key("lease", str(lease_id), "event_seq")

    def _events_key(self, lease_id: int) -> str:
        return self._config.key("lease", str(lease_id), "events")

    def append(self, event: LeaseEvent) -> LeaseEvent:
        event.seq = int(self._redis.incr(self._seq_key(event.lease_id)))
        payload = json.dumps(event.model_dump(), ensure_ascii=False, separators=(",", ":"))
        self._redis.rpush(self._events_key(event.lease_id), payload)
        return event

    def replay(self, lease_id: int) -> list[LeaseEvent]:
        events: list[LeaseEvent] = []
        for line in self._redis.lrange(self._events_key(lease_id), 0, -1):
            if not isinstance(line, str) or not line:
                continue
            try:
                events.append(LeaseEvent.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError):
                logger.warning("skipping malformed event lease_id=%s", lease_id)
        return events


def _parse_lease(payload: Any) -> Lease | None:
    if not isinstance(payload, str) or not payload:
        return None
    try:
        return Lease.model_validate(json.loads(payload))
    except (json.JSONDecodeError, ValidationError):
        logger.warning("skipping unreadable lease payload")
        return None


def _dump_lease(lease: Lease) -> str:
    return json.dumps(lease.model_dump(mode="json"), ensure_ascii=False)


class RedisLeaseStore:
    """Lease records as JSON strings plus an id index and a holder hash."""

    def __init__(self, config: RedisStoreConfig, *, client: Redis | None = None):
        self._config = config
        self._redis = client or _redis_from_url(config.url)

    def ensure_base_dir(self) -> None:
        return None

    def _lease_key(self, lease_id: int) -> str:
        return self._config.key("lease", str(lease_id))

    def _index_key(self) -> str:
        return self._config.key("lease", "ids")

    def _seq_key(self) -> str:
        return self._config.key("lease", "seq")

    def _holders_key(self) -> str:
        return self._config.key("resource", "holders")

    def create(
        self,
        attrs: LeaseAttrs,
        *,
        requester_id: str,
        owner_id: str,
        created_at: datetime | None = None,
    ) -> Lease:
        lease = Lease(
            id=int(self._redis.incr(self._seq_key())),
            name=attrs.name,
            requester_id=requester_id,
            owner_id=owner_id,
            status=LeaseStatus.PENDING,
            desired_duration_days=attrs.desired_duration_days,
            event_date=attrs.event_date,
            version_tag=attrs.version_tag,
            description=attrs.description,
            collaborators=list(attrs.collaborators),
            created_at=created_at or utc_now(),
        )
        with self._redis.pipeline() as pipe:
            pipe.set(self._lease_key(lease.id), _dump_lease(lease))
            pipe.zadd(self._index_key(), {str(lease.id): lease.id})
            pipe.execute()
        return lease

    def get(self, lease_id: int) -> Lease | None:
        return _parse_lease(self._redis.get(self._lease_key(lease_id)))

    def list(self, statuses: Iterable[LeaseStatus] | None = None) -> list[Lease]:
        wanted = set(statuses) if statuses is not None else None
        ids = self._redis.zrevrange(self._index_key(), 0, -1)
        if not ids:
            return []
        payloads = self._redis.mget([self._lease_key(int(lease_id)) for lease_id in ids])
        leases = [lease for lease in map(_parse_lease, payloads) if lease is not None]
        return [lease for lease in leases if wanted is None or lease.status in wanted]

    def active_holders(self) -> dict[str, int]:
        raw = self._redis.hgetall(self._holders_key())
        return {str(resource_id): int(lease_id) for resource_id, lease_id in raw.items()}

    def update(self, lease_id: int, **changes: Any) -> Lease:
        key = self._lease_key(lease_id)
        with self._redis.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    current = _parse_lease(pipe.get(key))
                    if current is None:
                        raise NotFound(f"lease {lease_id} not found")
                    updated = current.with_changes(**changes)
                    pipe.multi()
                    pipe.set(key, _dump_lease(updated))
                    released = current.assigned_resource_id
                    if released and updated.assigned_resource_id != released:
                        pipe.hdel(self._holders_key(), released)
                    pipe.execute()
                    return updated
                except WatchError:
                    continue

    def claim(
        self,
        lease_id: int,
        resource_id: str,
        *,
        start_at: datetime,
        end_at: datetime,
    ) -> Lease | None:
        """Activate a pending lease on ``resource_id`` if nobody else holds it."""
        key = self._lease_key(lease_id)
        holders_key = self._holders_key()
        with self._redis.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key, holders_key)
                    current = _parse_lease(pipe.get(key))
                    if current is None:
                        raise NotFound(f"lease {lease_id} not found")
                    if current.status is not LeaseStatus.PENDING:
                        return None
                    holder = pipe.hget(holders_key, resource_id)
                    if holder is not None and int(holder) != lease_id:
                        return None
                    activated = current.with_changes(
                        status=LeaseStatus.ACTIVE,
                        assigned_resource_id=resource_id,
                        start_at=start_at,
                        end_at=end_at,
                    )
                    pipe.multi()
                    pipe.set(key, _dump_lease(activated))
                    pipe.hset(holders_key, resource_id, str(lease_id))
                    pipe.execute()
                    return activated
                except WatchError:
                    continue


class RedisBindingStore:
    """Alias to physical-id bindings in a single Redis hash."""

    def __init__(self, config: RedisStoreConfig, *, client: Redis | None = None):
        self._config = config
        self._redis = client or _redis_from_url(config.url)

    def ensure_base_dir(self) -> None:
        return None

    def _key(self) -> str:
        return self._config.key("bindings")

    def list(self) -> list[ResourceBinding]:
        raw = self._redis.hgetall(self._key())
        return [
            ResourceBinding(alias=alias, physical_id=physical_id)
            for alias, physical_id in sorted(raw.items())
        ]

    def get(self, alias: str) -> ResourceBinding | None:
        physical_id = self._redis.hget(self._key(), alias)
        if physical_id is None:
            return None
        return ResourceBinding(alias=alias, physical_id=physical_id)

    def find_by_physical_id(self, physical_id: str) -> ResourceBinding | None:
        for binding in self.list():
            if binding.physical_id == physical_id:
                return binding
        return None

    def set(self, alias: str, physical_id: str) -> ResourceBinding:
        binding = ResourceBinding(alias=alias, physical_id=physical_id)
        self._redis.hset(self._key(), binding.alias, binding.physical_id)
        return binding

    def unset(self, alias: str) -> None:
        if not self._redis.hdel(self._key(), alias):
            raise NotFound(f"resource alias {alias!r} is not bound")
