from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .database import supabase


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_conversation(user_id: str, title: str) -> Dict[str, Any]:
    result = supabase.table("conversations").insert({"title": title, "user_id": user_id}).execute()
    return result.data[0]


def list_conversations(user_id: str) -> List[Dict[str, Any]]:
    result = (
        supabase.table("conversations")
        .select("*")
        .eq("user_id", user_id)
        .order("updated_at", desc=True)
        .execute()
    )
    return result.data or []


def get_conversation(conversation_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    result = (
        supabase.table("conversations")
        .select("*")
        .eq("id", conversation_id)
        .eq("user_id", user_id)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]


def update_conversation(conversation_id: str, user_id: str, **fields: Any) -> Optional[Dict[str, Any]]:
    allowed = {"title"}
    update_data = {k: v for k, v in fields.items() if k in allowed and v is not None}
    update_data["updated_at"] = _now()

    result = (
        supabase.table("conversations")
        .update(update_data)
        .eq("id", conversation_id)
        .eq("user_id", user_id)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]


def delete_conversation(conversation_id: str, user_id: str) -> bool:
    result = (
        supabase.table("conversations")
        .delete()
        .eq("id", conversation_id)
        .eq("user_id", user_id)
        .execute()
    )
    return len(result.data) > 0


def verify_conversation_owner(conversation_id: str, user_id: str) -> bool:
    result = supabase.table("conversations").select("id").eq("id", conversation_id).eq("user_id", user_id).execute()
    return len(result.data) > 0


def list_messages(conversation_id: str, user_id: str) -> List[Dict[str, Any]]:
    result = (
        supabase.table("messages")
        .select("*")
        .eq("conversation_id", conversation_id)
        .eq("user_id", user_id)
        .order("created_at")
        .execute()
    )
    return result.data or []


def add_message(conversation_id: str, user_id: str, role: str, content: str) -> Dict[str, Any]:
    result = supabase.table("messages").insert({
        "conversation_id": conversation_id,
        "user_id": user_id,
        "role": role,
        "content": content,
    }).execute()

    # Keep the conversation list ordered by last activity
    supabase.table("conversations").update({"updated_at": _now()}).eq("id", conversation_id).execute()
    return result.data[0]


def set_message_feedback(message_id: str, user_id: str, feedback: Optional[str]) -> Optional[Dict[str, Any]]:
    """Set or clear feedback on a message in one of the user's conversations."""
    message = supabase.table("messages").select("id,conversation_id").eq("id", message_id).execute()
    if not message.data:
        return None
    if not verify_conversation_owner(message.data[0]["conversation_id"], user_id):
        return None

    result = supabase.table("messages").update({"feedback": feedback}).eq("id", message_id).execute()
    return result.data[0] if result.data else None
