from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional

ProjectStatus = Literal["active", "processing", "completed", "archived"]
MessageRole = Literal["user", "assistant"]

MAX_DOCUMENT_BYTES = 10 * 1024 * 1024
MAX_DOCUMENTS_PER_REQUEST = 20


class _StrippedModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# Project models
class CreateProjectRequest(_StrippedModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class UpdateProjectRequest(_StrippedModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: Optional[ProjectStatus] = None


class ProjectDocumentInput(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    file_size: int = Field(ge=0, le=MAX_DOCUMENT_BYTES)
    extracted_text: str = ""


class AddDocumentsRequest(BaseModel):
    documents: List[ProjectDocumentInput] = Field(min_length=1, max_length=MAX_DOCUMENTS_PER_REQUEST)


class ProjectChatRequest(_StrippedModel):
    message: str = Field(min_length=1, max_length=10000)
    conversation_id: Optional[str] = None


# Conversation models
class CreateConversationRequest(_StrippedModel):
    title: str = Field(min_length=1, max_length=200)


class UpdateConversationRequest(_StrippedModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)


class CreateMessageRequest(_StrippedModel):
    content: str = Field(min_length=1, max_length=10000)
    role: MessageRole


class FeedbackRequest(BaseModel):
    feedback: Optional[Literal["up", "down"]] = None


# Relay models
class ChatTurn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class RelayRequest(_StrippedModel):
    """Body of the streaming project chat; field names follow the web client."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    messages: Optional[List[ChatTurn]] = None
    project_id: Optional[str] = Field(default=None, alias="projectId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    knowledge_base: Optional[str] = Field(default=None, alias="knowledgeBase")


# Memory / title models
class CreateMemoryRequest(_StrippedModel):
    content: str = Field(min_length=1, max_length=10000)


class GenerateTitleRequest(_StrippedModel):
    message: str = Field(min_length=1)


# General chat models
class ChatSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model: Optional[str] = Field(default=None, pattern=r"^[\w.-]+/[\w.-]+$")
    max_tokens: Optional[int] = Field(default=None, alias="maxTokens", ge=1, le=32768)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)


class ChatRequest(_StrippedModel):
    message: str = Field(min_length=1, max_length=10000)
    settings: ChatSettings = Field(default_factory=ChatSettings)
