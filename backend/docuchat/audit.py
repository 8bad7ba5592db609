import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("docuchat.audit")

# Action constants
AUTH_TOKEN_REJECTED = "auth.token_rejected"

PROJECT_CREATE = "project.create"
PROJECT_DELETE = "project.delete"
PROJECT_DOCUMENT_ADD = "project.document.add"
PROJECT_DOCUMENT_DELETE = "project.document.delete"

CHAT_CONVERSATION_CREATE = "chat.conversation.create"
CHAT_CONVERSATION_DELETE = "chat.conversation.delete"
CHAT_RELAY_START = "chat.relay.start"

MEMORY_DELETE = "memory.delete"


def build_event(
    action: str,
    user_id: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
    }
    if user_id:
        payload["user_id"] = user_id
    if target_type:
        payload["target_type"] = target_type
    if target_id:
        payload["target_id"] = target_id
    if metadata:
        payload["metadata"] = metadata
    if ip_address:
        payload["ip_address"] = ip_address
    return payload


def log_event(
    action: str,
    user_id: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> None:
    """Fire-and-forget security event, one JSON record per line."""
    try:
        event = build_event(action, user_id, target_type, target_id, metadata, ip_address)
        logger.info("SECURITY_EVENT %s", json.dumps(event, default=str))
    except Exception as e:
        logger.error(f"Failed to write audit event: {e}")
