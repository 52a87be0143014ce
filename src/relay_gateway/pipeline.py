"""Session conversation pipeline: history in, completion, history out."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .errors import SessionNotFound
from .failover import FailoverSequencer
from .providers.base import CompletionRequest, CompletionResponse, Message, Usage
from .sessions import Session, SessionStore, utcnow_iso

LOGGER = logging.getLogger("relay_gateway.pipeline")

ToolHandler = Callable[..., Awaitable[Any]]


@dataclass
class ToolSpec:
    """A side-effecting tool the model may call, invoked as an opaque callable."""

    name: str
    description: str
    handler: ToolHandler
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def descriptor(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolCallRecord:
    id: str
    function: str
    arguments: str
    status: str
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "function": self.function,
            "arguments": self.arguments,
            "status": self.status,
        }


@dataclass
class ConversationReply:
    """Outcome of one exchange, ready for the transport layer to format."""

    session_id: str
    message: Message
    provider: Optional[str]
    attempt: Optional[int]
    message_count: int
    processing_time_ms: float
    usage: Usage = field(default_factory=Usage)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def content(self) -> str:
        return self.message.content


class ConversationPipeline:
    """Append an exchange to a session's history around one completion."""

    def __init__(
        self,
        store: SessionStore,
        sequencer: FailoverSequencer,
        *,
        tools: Optional[Sequence[ToolSpec]] = None,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
    ) -> None:
        self._store = store
        self._sequencer = sequencer
        self._tools = {tool.name: tool for tool in tools or ()}
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._system_prompt = system_prompt

    async def create_session(self, session_type: str = "web", session_id: Optional[str] = None) -> Session:
        session = Session.new(session_id or str(uuid.uuid4()), session_type=session_type)
        await self._store.put(session.id, session.to_dict())
        LOGGER.info("Created new %s session: %s", session_type, session.id)
        return session

    async def get_session(self, session_id: str) -> Session:
        record = await self._store.get(session_id)
        if record is None:
            raise SessionNotFound(session_id)
        return Session.from_dict(record)

    async def delete_session(self, session_id: str) -> None:
        if not await self._store.delete(session_id):
            raise SessionNotFound(session_id)
        LOGGER.info("Deleted session: %s", session_id)

    async def get_messages(self, session_id: str, *, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        session = await self.get_session(session_id)
        limit = max(limit, 0)
        offset = max(offset, 0)
        page = session.messages[offset : offset + limit]
        return {
            "messages": [
                {
                    "index": offset + position,
                    "role": message.role,
                    "content": message.content,
                    "toolCalls": message.tool_calls or [],
                }
                for position, message in enumerate(page)
            ],
            "pagination": {
                "total": len(session.messages),
                "limit": limit,
                "offset": offset,
                "hasMore": offset + limit < len(session.messages),
            },
            "metadata": session.metadata.to_dict(),
        }

    async def handle_message(self, session_id: str, user_text: str) -> ConversationReply:
        """Run one exchange and write the session back as a single replace.

        Concurrent exchanges on the same session are not serialized: the last
        write wins.
        """
        start = perf_counter()
        session = await self.get_session(session_id)

        user_message = Message(role="user", content=user_text)
        history = list(session.messages)
        history.append(user_message)

        response = await self._sequencer.create_completion(self._build_request(history))
        assistant, tool_records = await self._resolve_tool_calls(history, response)

        session.messages = history + [assistant]
        session.metadata.message_count += 2
        session.metadata.last_activity = utcnow_iso()
        await self._store.put(session.id, session.to_dict())

        processing_time_ms = (perf_counter() - start) * 1000
        LOGGER.info("Processed message for session %s in %.0fms", session.id, processing_time_ms)
        return ConversationReply(
            session_id=session.id,
            message=assistant,
            provider=response.provider,
            attempt=response.attempt,
            message_count=session.metadata.message_count,
            processing_time_ms=processing_time_ms,
            usage=response.usage,
            tool_calls=tool_records,
        )

    def _build_request(self, history: List[Message]) -> CompletionRequest:
        messages = list(history)
        if self._system_prompt and not any(message.role == "system" for message in messages):
            messages.insert(0, Message(role="system", content=self._system_prompt))
        tools = [tool.descriptor() for tool in self._tools.values()] or None
        return CompletionRequest(
            messages=messages,
            temperature=self._temperature,
            max_output_tokens=self._max_output_tokens,
            tools=tools,
            tool_choice="auto" if tools else None,
        )

    async def _resolve_tool_calls(
        self,
        history: List[Message],
        response: CompletionResponse,
    ) -> tuple[Message, List[ToolCallRecord]]:
        message = response.message
        if not message.tool_calls or not self._tools:
            return Message(role="assistant", content=message.content), []

        records: List[ToolCallRecord] = []
        tool_messages: List[Message] = []
        for call in message.tool_calls:
            record = await self._invoke_tool(call)
            records.append(record)
            result = record.result if record.status == "executed" else {"error": record.result}
            tool_messages.append(
                Message(
                    role="tool",
                    content=result if isinstance(result, str) else json.dumps(result, default=str),
                    tool_call_id=record.id,
                    name=record.function,
                )
            )

        follow_up = self._build_request(
            history + [Message(role="assistant", content=message.content, tool_calls=message.tool_calls)] + tool_messages
        )
        follow_up.tools = None
        follow_up.tool_choice = None
        final = await self._sequencer.create_completion(follow_up)
        return Message(role="assistant", content=final.content), records

    async def _invoke_tool(self, call: Dict[str, Any]) -> ToolCallRecord:
        function = call.get("function") or {}
        name = str(function.get("name") or "")
        raw_arguments = function.get("arguments") or "{}"
        if not isinstance(raw_arguments, str):
            raw_arguments = json.dumps(raw_arguments)
        call_id = str(call.get("id") or f"call_{uuid.uuid4().hex}")

        tool = self._tools.get(name)
        if tool is None:
            LOGGER.warning("Model requested unknown tool %s", name)
            return ToolCallRecord(call_id, name, raw_arguments, "unknown", f"Unknown tool: {name}")
        try:
            arguments = json.loads(raw_arguments) if raw_arguments.strip() else {}
            if not isinstance(arguments, dict):
                raise ValueError("tool arguments must be a JSON object")
            result = await tool.handler(**arguments)
        except Exception as exc:
            LOGGER.exception("Tool %s failed", name)
            return ToolCallRecord(call_id, name, raw_arguments, "failed", str(exc))
        return ToolCallRecord(call_id, name, raw_arguments, "executed", result)
