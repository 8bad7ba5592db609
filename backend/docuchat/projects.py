"""Projects: CRUD, document listing, project conversations and messages."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .database import supabase
from .knowledge import build_knowledge_base

logger = logging.getLogger(__name__)

PROJECT_LIST_COLUMNS = "id,name,description,status,document_count,created_at,updated_at"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Project CRUD ──


def create_project(user_id: str, name: str, description: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "user_id": user_id,
        "name": name,
        "status": "active",
        "document_count": 0,
    }
    if description:
        payload["description"] = description
    result = supabase.table("projects").insert(payload).execute()
    return result.data[0]


def list_projects(user_id: str) -> List[Dict[str, Any]]:
    result = (
        supabase.table("projects")
        .select(PROJECT_LIST_COLUMNS)
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
    )
    return result.data or []


def get_owned_project(project_id: str, user_id: str, columns: str = "*") -> Optional[Dict[str, Any]]:
    """Return the project if it belongs to the user, else None."""
    result = (
        supabase.table("projects")
        .select(columns)
        .eq("id", project_id)
        .eq("user_id", user_id)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]


def update_project(project_id: str, user_id: str, **fields: Any) -> Optional[Dict[str, Any]]:
    allowed = {"name", "description", "status"}
    update_data = {k: v for k, v in fields.items() if k in allowed}
    update_data["updated_at"] = _now()

    result = (
        supabase.table("projects")
        .update(update_data)
        .eq("id", project_id)
        .eq("user_id", user_id)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]


def delete_project(project_id: str, user_id: str) -> bool:
    result = supabase.table("projects").delete().eq("id", project_id).eq("user_id", user_id).execute()
    return len(result.data) > 0


# ── Documents ──


def list_documents(project_id: str, user_id: str) -> List[Dict[str, Any]]:
    result = (
        supabase.table("project_documents")
        .select("id,project_id,filename,file_size,created_at")
        .eq("project_id", project_id)
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
    )
    return result.data or []


def refresh_project_knowledge(
    project_id: str,
    user_id: str,
    status: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Rebuild the project's combined extracted text from its documents."""
    docs = (
        supabase.table("project_documents")
        .select("filename,extracted_text")
        .eq("project_id", project_id)
        .eq("user_id", user_id)
        .order("created_at")
        .execute()
    )
    rows = docs.data or []
    knowledge_base = build_knowledge_base(rows)
    update_data: Dict[str, Any] = {
        "extracted_text": knowledge_base or None,
        "document_count": len(rows),
        "updated_at": _now(),
    }
    if status:
        update_data["status"] = status
    result = (
        supabase.table("projects")
        .update(update_data)
        .eq("id", project_id)
        .eq("user_id", user_id)
        .execute()
    )
    return result.data[0] if result.data else None


def add_documents(
    project_id: str,
    user_id: str,
    documents: List[Dict[str, Any]],
    status: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Store already-extracted documents and rebuild the knowledge base."""
    processed_at = _now()
    rows = [
        {
            "project_id": project_id,
            "user_id": user_id,
            "filename": doc["filename"],
            "file_size": doc.get("file_size", 0),
            "extracted_text": doc.get("extracted_text") or "",
            "processed_at": processed_at,
        }
        for doc in documents
    ]
    supabase.table("project_documents").insert(rows).execute()
    logger.info("Stored %d documents for project %s", len(rows), project_id)
    return refresh_project_knowledge(project_id, user_id, status=status)


def delete_document(project_id: str, document_id: str, user_id: str) -> bool:
    result = (
        supabase.table("project_documents")
        .delete()
        .eq("id", document_id)
        .eq("project_id", project_id)
        .eq("user_id", user_id)
        .execute()
    )
    if not result.data:
        return False
    refresh_project_knowledge(project_id, user_id)
    return True


# ── Project conversations ──


def list_conversations(project_id: str, user_id: str) -> List[Dict[str, Any]]:
    result = (
        supabase.table("project_conversations")
        .select("*")
        .eq("project_id", project_id)
        .eq("user_id", user_id)
        .order("updated_at", desc=True)
        .execute()
    )
    return result.data or []


def create_conversation(project_id: str, user_id: str, title: str) -> Dict[str, Any]:
    result = supabase.table("project_conversations").insert({
        "project_id": project_id,
        "user_id": user_id,
        "title": title,
    }).execute()
    return result.data[0]


def get_owned_conversation(conversation_id: str, project_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    result = (
        supabase.table("project_conversations")
        .select("id")
        .eq("id", conversation_id)
        .eq("project_id", project_id)
        .eq("user_id", user_id)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]


def list_messages(conversation_id: str, project_id: str, user_id: str) -> List[Dict[str, Any]]:
    result = (
        supabase.table("project_messages")
        .select("*")
        .eq("conversation_id", conversation_id)
        .eq("project_id", project_id)
        .eq("user_id", user_id)
        .order("created_at")
        .execute()
    )
    return result.data or []


def add_message(
    conversation_id: str,
    project_id: str,
    user_id: str,
    role: str,
    content: str,
) -> Dict[str, Any]:
    result = supabase.table("project_messages").insert({
        "conversation_id": conversation_id,
        "project_id": project_id,
        "user_id": user_id,
        "role": role,
        "content": content,
    }).execute()

    supabase.table("project_conversations").update({"updated_at": _now()}).eq("id", conversation_id).execute()
    return result.data[0]
