"""Conversation sessions and their storage backends."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from redis.asyncio import Redis as AsyncRedis, from_url as redis_from_url

from .providers.base import Message


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SessionMetadata:
    created_at: str
    last_activity: str
    message_count: int = 0
    session_type: str = "web"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "createdAt": self.created_at,
            "lastActivity": self.last_activity,
            "messageCount": self.message_count,
            "sessionType": self.session_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionMetadata":
        now = utcnow_iso()
        return cls(
            created_at=str(data.get("createdAt") or now),
            last_activity=str(data.get("lastActivity") or data.get("createdAt") or now),
            message_count=int(data.get("messageCount") or 0),
            session_type=str(data.get("sessionType") or "web"),
        )


@dataclass
class Session:
    id: str
    messages: List[Message] = field(default_factory=list)
    metadata: SessionMetadata = field(default_factory=lambda: SessionMetadata(utcnow_iso(), utcnow_iso()))

    @classmethod
    def new(cls, session_id: str, *, session_type: str = "web") -> "Session":
        now = utcnow_iso()
        return cls(
            id=session_id,
            metadata=SessionMetadata(created_at=now, last_activity=now, session_type=session_type),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "messages": [message.to_dict() for message in self.messages],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        raw_messages = data.get("messages") or []
        return cls(
            id=str(data["id"]),
            messages=[Message.from_dict(item) for item in raw_messages if isinstance(item, dict)],
            metadata=SessionMetadata.from_dict(data.get("metadata") or {}),
        )


class SessionStore(Protocol):
    """Key-value store of session records keyed by session id."""

    async def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Retrieve the stored session record."""

    async def put(self, session_id: str, record: Dict[str, Any]) -> None:
        """Replace the stored session record."""

    async def delete(self, session_id: str) -> bool:
        """Remove the record; return whether it existed."""


class InMemorySessionStore(SessionStore):
    """Simple in-memory store primarily for testing or local runs."""

    def __init__(self) -> None:
        self._storage: Dict[str, Dict[str, Any]] = {}

    async def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        record = self._storage.get(session_id)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, session_id: str, record: Dict[str, Any]) -> None:
        self._storage[session_id] = copy.deepcopy(record)

    async def delete(self, session_id: str) -> bool:
        return self._storage.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._storage)


class RedisSessionStore(SessionStore):
    """Redis-backed session store holding each record as a JSON string."""

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        prefix: str,
        ttl: Optional[int] = None,
        redis_client: Optional[AsyncRedis] = None,
    ) -> None:
        if redis_client is None and url is None:
            raise ValueError("RedisSessionStore requires either a redis_client or url")
        self._url = url
        self._client: Optional[AsyncRedis] = redis_client
        self._prefix = prefix.rstrip(":")
        self._ttl = ttl

    async def _client_or_create(self) -> AsyncRedis:
        if self._client is None:
            assert self._url is not None
            self._client = redis_from_url(self._url, decode_responses=False)
        return self._client

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}:{session_id}"

    async def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        client = await self._client_or_create()
        value = await client.get(self._key(session_id))
        if not value:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return json.loads(value)

    async def put(self, session_id: str, record: Dict[str, Any]) -> None:
        client = await self._client_or_create()
        dump = json.dumps(record)
        if self._ttl and self._ttl > 0:
            await client.set(self._key(session_id), dump, ex=self._ttl)
        else:
            await client.set(self._key(session_id), dump)

    async def delete(self, session_id: str) -> bool:
        client = await self._client_or_create()
        return bool(await client.delete(self._key(session_id)))

    async def ping(self) -> bool:
        client = await self._client_or_create()
        return bool(await client.ping())

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
