"""Structured payloads handed to the transport layer."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .errors import AllProvidersFailed, GatewayError, SessionNotFound
from .pipeline import ConversationReply
from .providers.base import ErrorKind, ProviderError
from .sessions import Session, utcnow_iso


def success_payload(data: Optional[Dict[str, Any]] = None, message: str = "Success") -> Dict[str, Any]:
    return {"success": True, "message": message, "timestamp": utcnow_iso(), **(data or {})}


def error_payload(error: BaseException, message: str = "An error occurred") -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "success": False,
        "message": message,
        "timestamp": utcnow_iso(),
        "error": str(error),
        "code": error_code(error),
    }
    if isinstance(error, AllProvidersFailed):
        payload["providersTried"] = error.tried
        if error.last_error is not None:
            payload["cause"] = {"kind": error.last_error.kind.value, "message": error.last_error.message}
    elif isinstance(error, ProviderError):
        payload["retryable"] = error.retryable
    return payload


def error_code(error: BaseException) -> str:
    if isinstance(error, GatewayError):
        return error.code
    if isinstance(error, ProviderError):
        return error.kind.value.lower()
    return "internal_error"


def http_status(error: BaseException) -> int:
    """Suggested HTTP status for a failure surfaced to the caller."""
    if isinstance(error, SessionNotFound):
        return 404
    if isinstance(error, ProviderError) and error.kind is ErrorKind.INVALID_REQUEST:
        return 400
    if isinstance(error, (AllProvidersFailed, ProviderError)):
        return 502
    if isinstance(error, GatewayError):
        return 503
    return 500


def reply_payload(reply: ConversationReply) -> Dict[str, Any]:
    payload = success_payload(
        {
            "sessionId": reply.session_id,
            "messageId": reply.message_id,
            "message": {
                "role": reply.message.role,
                "content": reply.message.content,
                "timestamp": utcnow_iso(),
            },
            "metadata": {
                "processingTime": round(reply.processing_time_ms),
                "provider": reply.provider or "unknown",
                "attempt": reply.attempt,
                "messageCount": reply.message_count,
                "hasToolCalls": bool(reply.tool_calls),
                "usage": {
                    "promptTokens": reply.usage.prompt_tokens,
                    "completionTokens": reply.usage.completion_tokens,
                    "totalTokens": reply.usage.total_tokens,
                },
            },
        },
        "Message processed successfully",
    )
    if reply.tool_calls:
        payload["toolCalls"] = [record.to_dict() for record in reply.tool_calls]
    return payload


def session_payload(session: Session, *, is_active: bool = False) -> Dict[str, Any]:
    metadata = session.metadata
    return success_payload(
        {
            "sessionId": session.id,
            "metadata": metadata.to_dict(),
            "stats": {
                "messageCount": metadata.message_count,
                "createdAt": metadata.created_at,
                "lastActivity": metadata.last_activity,
                "sessionType": metadata.session_type,
            },
            "isActive": is_active,
        },
        "Session retrieved successfully",
    )
