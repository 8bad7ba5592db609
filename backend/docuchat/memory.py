import re
from typing import Any, Dict, List, Optional

from .database import supabase

MAX_CONTEXT_MEMORIES = 10

_REMEMBER_PATTERNS = [
    re.compile(r"^remember\s+(?:that\s+)?(.+)$", re.IGNORECASE | re.DOTALL),
    re.compile(r"^please\s+remember\s+(?:that\s+)?(.+)$", re.IGNORECASE | re.DOTALL),
    re.compile(r"^note\s+(?:that\s+)?(.+)$", re.IGNORECASE | re.DOTALL),
    re.compile(r"^save\s+(?:that\s+)?(.+)$", re.IGNORECASE | re.DOTALL),
]


def list_memories(user_id: str) -> List[Dict[str, Any]]:
    result = (
        supabase.table("user_memories")
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
    )
    return result.data or []


def create_memory(user_id: str, content: str) -> Dict[str, Any]:
    result = supabase.table("user_memories").insert({"user_id": user_id, "content": content}).execute()
    return result.data[0]


def delete_memory(memory_id: str, user_id: str) -> bool:
    """Delete a memory. Only the owner can delete it."""
    result = supabase.table("user_memories").delete().eq("id", memory_id).eq("user_id", user_id).execute()
    return len(result.data) > 0


def build_memory_context(memories: List[Dict[str, Any]]) -> str:
    """Render the newest memories as a numbered block for a system prompt."""
    if not memories:
        return ""
    lines = ["## User Memories", "The following are important facts about the user:"]
    for i, memory in enumerate(memories[:MAX_CONTEXT_MEMORIES], start=1):
        lines.append(f"{i}. {memory.get('content', '')}")
    return "\n".join(lines)


def parse_remember_command(message: str) -> Optional[str]:
    """Return the fact from "remember that ..." style messages, else None."""
    text = message.strip()
    for pattern in _REMEMBER_PATTERNS:
        match = pattern.match(text)
        if match:
            fact = match.group(1).strip()
            return fact or None
    return None
