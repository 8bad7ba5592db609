import logging
import os
from typing import Dict

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from . import audit
from . import knowledge
from . import llm
from . import memory as memory_mod
from . import projects as projects_mod
from . import relay
from . import storage
from .auth import get_current_user, token_subject
from .config import CHAT_MAX_TOKENS, CHAT_MODEL, CORS_ORIGINS_LIST, RATE_LIMIT_STORAGE_URL, SESSION_COOKIE_NAME
from .models import (
    AddDocumentsRequest,
    ChatRequest,
    CreateConversationRequest,
    CreateMemoryRequest,
    CreateMessageRequest,
    CreateProjectRequest,
    FeedbackRequest,
    GenerateTitleRequest,
    ProjectChatRequest,
    RelayRequest,
    UpdateConversationRequest,
    UpdateProjectRequest,
)
from .titles import generate_title

logger = logging.getLogger(__name__)

app = FastAPI(title="DocuChat API")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}

CHAT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Answer clearly and accurately, and say so "
    "when you are unsure."
)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _rate_limit_key(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    token = ""
    if auth_header.startswith("Bearer "):
        token = auth_header.replace("Bearer ", "", 1).strip()
    if not token:
        token = request.cookies.get(SESSION_COOKIE_NAME, "")
    if token:
        subject = token_subject(token)
        if subject:
            return f"user:{subject}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=_rate_limit_key, storage_uri=RATE_LIMIT_STORAGE_URL)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS_LIST,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Cache-Control", "Connection"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    del request
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _require_project(project_id: str, user_id: str, columns: str = "id") -> Dict:
    project = projects_mod.get_owned_project(project_id, user_id, columns=columns)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found or access denied")
    return project


def _require_project_conversation(conversation_id: str, project_id: str, user_id: str) -> None:
    if not projects_mod.get_owned_conversation(conversation_id, project_id, user_id):
        raise HTTPException(status_code=404, detail="Conversation not found or access denied")


# ── Public Endpoints ──


@app.get("/")
async def root() -> dict:
    return {"status": "ok", "service": "docuchat-backend"}


@app.get("/api/health")
async def health() -> dict:
    return {"status": "healthy", "env": os.getenv("ENVIRONMENT", "development")}


# ── Auth ──


@app.get("/api/auth/me", response_model=None)
async def get_me(current_user: Dict = Depends(get_current_user)):
    return {"user": current_user}


# ── Streaming project chat ──


@app.post("/api/project-chat", response_model=None)
@limiter.limit("30/minute")
async def project_chat_stream(
    payload: RelayRequest,
    request: Request,
    current_user: Dict = Depends(get_current_user),
):
    del request
    if not payload.messages or not payload.project_id or not payload.conversation_id or not payload.user_id:
        raise HTTPException(status_code=400, detail="Missing required fields")
    if payload.user_id != current_user["id"]:
        raise HTTPException(status_code=404, detail="Project not found or access denied")

    project = _require_project(
        payload.project_id, current_user["id"], columns="id,name,description,extracted_text"
    )
    knowledge_base = knowledge.truncate_to_token_budget(
        payload.knowledge_base or project.get("extracted_text") or ""
    )
    system_prompt = knowledge.build_project_system_prompt(project, knowledge_base)
    messages = [turn.model_dump() for turn in payload.messages if turn.role != "system"]

    audit.log_event(
        audit.CHAT_RELAY_START,
        user_id=current_user["id"],
        target_type="project",
        target_id=payload.project_id,
        metadata={"conversation_id": payload.conversation_id, "turns": len(messages)},
    )
    return StreamingResponse(
        relay.stream_project_chat(messages, system_prompt),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )


# ── Projects ──


@app.get("/api/projects", response_model=None)
async def list_projects(current_user: Dict = Depends(get_current_user)):
    return {"projects": projects_mod.list_projects(current_user["id"])}


@app.post("/api/projects", response_model=None)
async def create_project(
    request: CreateProjectRequest,
    current_user: Dict = Depends(get_current_user),
):
    project = projects_mod.create_project(current_user["id"], request.name, request.description)
    audit.log_event(
        audit.PROJECT_CREATE,
        user_id=current_user["id"],
        target_type="project",
        target_id=project.get("id"),
    )
    return {"project": project}


@app.get("/api/projects/{project_id}", response_model=None)
async def get_project(
    project_id: str,
    current_user: Dict = Depends(get_current_user),
):
    project = projects_mod.get_owned_project(project_id, current_user["id"])
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return {"project": project}


@app.put("/api/projects/{project_id}", response_model=None)
async def update_project(
    project_id: str,
    request: UpdateProjectRequest,
    current_user: Dict = Depends(get_current_user),
):
    updates = request.model_dump(exclude_unset=True)
    if "name" in updates and updates["name"] is None:
        raise HTTPException(status_code=400, detail="Project name is required")
    if "status" in updates and updates["status"] is None:
        del updates["status"]
    if "description" in updates:
        updates["description"] = updates["description"] or None

    project = projects_mod.update_project(project_id, current_user["id"], **updates)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return {"project": project}


@app.delete("/api/projects/{project_id}", response_model=None)
async def delete_project(
    project_id: str,
    current_user: Dict = Depends(get_current_user),
):
    deleted = projects_mod.delete_project(project_id, current_user["id"])
    if not deleted:
        raise HTTPException(status_code=404, detail="Project not found")
    audit.log_event(
        audit.PROJECT_DELETE,
        user_id=current_user["id"],
        target_type="project",
        target_id=project_id,
    )
    return {"message": "Project deleted successfully"}


@app.get("/api/projects/{project_id}/documents", response_model=None)
async def list_project_documents(
    project_id: str,
    current_user: Dict = Depends(get_current_user),
):
    _require_project(project_id, current_user["id"])
    return {"documents": projects_mod.list_documents(project_id, current_user["id"])}


@app.post("/api/projects/{project_id}/documents", response_model=None)
async def add_project_documents(
    project_id: str,
    request: AddDocumentsRequest,
    current_user: Dict = Depends(get_current_user),
):
    project = _require_project(project_id, current_user["id"], columns="id,status")
    status = "active" if project.get("status") == "processing" else None
    updated = projects_mod.add_documents(
        project_id,
        current_user["id"],
        [doc.model_dump() for doc in request.documents],
        status=status,
    )
    audit.log_event(
        audit.PROJECT_DOCUMENT_ADD,
        user_id=current_user["id"],
        target_type="project",
        target_id=project_id,
        metadata={"documents": len(request.documents)},
    )
    return {"success": True, "processedFiles": len(request.documents), "project": updated}


@app.delete("/api/projects/{project_id}/documents/{document_id}", response_model=None)
async def delete_project_document(
    project_id: str,
    document_id: str,
    current_user: Dict = Depends(get_current_user),
):
    _require_project(project_id, current_user["id"])
    deleted = projects_mod.delete_document(project_id, document_id, current_user["id"])
    if not deleted:
        raise HTTPException(status_code=404, detail="Document not found")
    audit.log_event(
        audit.PROJECT_DOCUMENT_DELETE,
        user_id=current_user["id"],
        target_type="project_document",
        target_id=document_id,
        metadata={"project_id": project_id},
    )
    return {"deleted": True}


@app.get("/api/projects/{project_id}/conversations", response_model=None)
async def list_project_conversations(
    project_id: str,
    current_user: Dict = Depends(get_current_user),
):
    _require_project(project_id, current_user["id"])
    return {"conversations": projects_mod.list_conversations(project_id, current_user["id"])}


@app.post("/api/projects/{project_id}/conversations", response_model=None)
async def create_project_conversation(
    project_id: str,
    request: CreateConversationRequest,
    current_user: Dict = Depends(get_current_user),
):
    _require_project(project_id, current_user["id"])
    conversation = projects_mod.create_conversation(project_id, current_user["id"], request.title)
    return {"conversation": conversation}


@app.get("/api/projects/{project_id}/conversations/{conversation_id}/messages", response_model=None)
async def list_project_messages(
    project_id: str,
    conversation_id: str,
    current_user: Dict = Depends(get_current_user),
):
    _require_project(project_id, current_user["id"])
    _require_project_conversation(conversation_id, project_id, current_user["id"])
    return {"messages": projects_mod.list_messages(conversation_id, project_id, current_user["id"])}


@app.post("/api/projects/{project_id}/conversations/{conversation_id}/messages", response_model=None)
async def create_project_message(
    project_id: str,
    conversation_id: str,
    request: CreateMessageRequest,
    current_user: Dict = Depends(get_current_user),
):
    _require_project(project_id, current_user["id"])
    _require_project_conversation(conversation_id, project_id, current_user["id"])
    message = projects_mod.add_message(
        conversation_id, project_id, current_user["id"], request.role, request.content,
    )
    return {"message": message}


@app.post("/api/projects/{project_id}/chat", response_model=None)
@limiter.limit("30/minute")
async def project_chat(
    project_id: str,
    payload: ProjectChatRequest,
    request: Request,
    current_user: Dict = Depends(get_current_user),
):
    del request
    project = _require_project(project_id, current_user["id"], columns="id,name,extracted_text")
    if not project.get("extracted_text"):
        raise HTTPException(status_code=400, detail="Project documents are still being processed")
    if payload.conversation_id:
        _require_project_conversation(payload.conversation_id, project_id, current_user["id"])

    prompt = knowledge.build_document_qa_prompt(
        project,
        knowledge.truncate_to_token_budget(project["extracted_text"]),
        payload.message,
    )
    try:
        answer = await llm.complete_chat(
            [{"role": "user", "content": prompt}],
            CHAT_MODEL,
            knowledge.DOCUMENT_QA_SYSTEM_PROMPT,
            CHAT_MAX_TOKENS,
            temperature=0.7,
        )
    except llm.LLMError as e:
        raise HTTPException(status_code=502, detail=str(e))

    answer = answer.strip()
    if not answer:
        raise HTTPException(status_code=502, detail="Empty response from AI model")

    if payload.conversation_id:
        try:
            projects_mod.add_message(payload.conversation_id, project_id, current_user["id"], "user", payload.message)
            projects_mod.add_message(payload.conversation_id, project_id, current_user["id"], "assistant", answer)
        except Exception as e:
            logger.error("Failed to save project chat turn for %s: %s", payload.conversation_id, e)

    return {"response": answer, "projectName": project.get("name")}


# ── Conversations ──


@app.get("/api/conversations", response_model=None)
async def list_conversations(current_user: Dict = Depends(get_current_user)):
    return {"conversations": storage.list_conversations(current_user["id"])}


@app.post("/api/conversations", response_model=None)
async def create_conversation(
    request: CreateConversationRequest,
    current_user: Dict = Depends(get_current_user),
):
    conversation = storage.create_conversation(current_user["id"], request.title)
    audit.log_event(
        audit.CHAT_CONVERSATION_CREATE,
        user_id=current_user["id"],
        target_type="conversation",
        target_id=conversation.get("id"),
    )
    return {"conversation": conversation}


@app.get("/api/conversations/{conversation_id}", response_model=None)
async def get_conversation(
    conversation_id: str,
    current_user: Dict = Depends(get_current_user),
):
    conversation = storage.get_conversation(conversation_id, current_user["id"])
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"conversation": conversation}


@app.put("/api/conversations/{conversation_id}", response_model=None)
async def update_conversation(
    conversation_id: str,
    request: UpdateConversationRequest,
    current_user: Dict = Depends(get_current_user),
):
    updates = request.model_dump(exclude_unset=True)
    if "title" in updates and updates["title"] is None:
        raise HTTPException(status_code=400, detail="Conversation title is required")
    conversation = storage.update_conversation(conversation_id, current_user["id"], **updates)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"conversation": conversation}


@app.delete("/api/conversations/{conversation_id}", response_model=None)
async def delete_conversation(
    conversation_id: str,
    current_user: Dict = Depends(get_current_user),
):
    deleted = storage.delete_conversation(conversation_id, current_user["id"])
    if not deleted:
        raise HTTPException(status_code=404, detail="Conversation not found")
    audit.log_event(
        audit.CHAT_CONVERSATION_DELETE,
        user_id=current_user["id"],
        target_type="conversation",
        target_id=conversation_id,
    )
    return {"deleted": True}


@app.get("/api/conversations/{conversation_id}/messages", response_model=None)
async def list_messages(
    conversation_id: str,
    current_user: Dict = Depends(get_current_user),
):
    if not storage.verify_conversation_owner(conversation_id, current_user["id"]):
        raise HTTPException(status_code=404, detail="Conversation not found or access denied")
    return {"messages": storage.list_messages(conversation_id, current_user["id"])}


@app.post("/api/conversations/{conversation_id}/messages", response_model=None)
async def create_message(
    conversation_id: str,
    request: CreateMessageRequest,
    current_user: Dict = Depends(get_current_user),
):
    if not storage.verify_conversation_owner(conversation_id, current_user["id"]):
        raise HTTPException(status_code=404, detail="Conversation not found or access denied")
    message = storage.add_message(conversation_id, current_user["id"], request.role, request.content)
    return {"message": message}


@app.put("/api/messages/{message_id}/feedback", response_model=None)
async def update_message_feedback(
    message_id: str,
    request: FeedbackRequest,
    current_user: Dict = Depends(get_current_user),
):
    message = storage.set_message_feedback(message_id, current_user["id"], request.feedback)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    return {"message": message}


# ── Memory ──


@app.get("/api/memory", response_model=None)
async def list_memories(current_user: Dict = Depends(get_current_user)):
    return {"memories": memory_mod.list_memories(current_user["id"])}


@app.post("/api/memory", response_model=None)
async def create_memory(
    request: CreateMemoryRequest,
    current_user: Dict = Depends(get_current_user),
):
    memory = memory_mod.create_memory(current_user["id"], request.content)
    return {"success": True, "memory": memory}


@app.delete("/api/memory/{memory_id}", response_model=None)
async def delete_memory(
    memory_id: str,
    current_user: Dict = Depends(get_current_user),
):
    deleted = memory_mod.delete_memory(memory_id, current_user["id"])
    if not deleted:
        raise HTTPException(status_code=404, detail="Memory not found")
    audit.log_event(
        audit.MEMORY_DELETE,
        user_id=current_user["id"],
        target_type="memory",
        target_id=memory_id,
    )
    return {"success": True}


# ── General chat ──


@app.post("/api/chat", response_model=None)
@limiter.limit("30/minute")
async def chat(
    payload: ChatRequest,
    request: Request,
    current_user: Dict = Depends(get_current_user),
):
    del request
    user_id = current_user["id"]

    memory_saved = False
    fact = memory_mod.parse_remember_command(payload.message)
    if fact:
        memory_mod.create_memory(user_id, fact)
        memory_saved = True

    system_prompt = CHAT_SYSTEM_PROMPT
    memory_context = memory_mod.build_memory_context(memory_mod.list_memories(user_id))
    if memory_context:
        system_prompt = f"{system_prompt}\n\n{memory_context}"

    settings = payload.settings
    try:
        content = await llm.complete_chat(
            [{"role": "user", "content": payload.message}],
            settings.model or CHAT_MODEL,
            system_prompt,
            settings.max_tokens or CHAT_MAX_TOKENS,
            temperature=settings.temperature,
        )
    except llm.LLMError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {"content": content.strip(), "memorySaved": memory_saved}


# ── Titles ──


@app.post("/api/generate-title", response_model=None)
@limiter.limit("30/minute")
async def create_title(
    payload: GenerateTitleRequest,
    request: Request,
    current_user: Dict = Depends(get_current_user),
):
    del request, current_user
    return {"title": await generate_title(payload.message)}
