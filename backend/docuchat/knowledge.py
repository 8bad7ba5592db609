import logging
from typing import Any, Dict, Iterable, Optional

from .config import KNOWLEDGE_BASE_MAX_TOKENS

logger = logging.getLogger(__name__)

EMPTY_KNOWLEDGE_BASE = "No documents have been processed yet."
TRUNCATION_MARKER = "\n\n[Knowledge base truncated]"

# Module-level tiktoken encoder (lazy-loaded once, then cached)
_encoder = None


def _get_encoder():
    """Lazy-load and cache the cl100k_base tiktoken encoder."""
    global _encoder
    if _encoder is None:
        import tiktoken  # noqa: PLC0415
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def build_knowledge_base(documents: Iterable[Dict[str, Any]]) -> str:
    """Concatenate extracted document texts under per-document headers."""
    parts = []
    for doc in documents:
        text = (doc.get("extracted_text") or "").strip()
        if not text:
            continue
        filename = doc.get("filename") or "untitled"
        parts.append(f"--- Document: {filename} ---\n{text}")
    return "\n\n".join(parts)


def truncate_to_token_budget(text: str, max_tokens: int = KNOWLEDGE_BASE_MAX_TOKENS) -> str:
    if not text or max_tokens <= 0:
        return text
    # Every token covers at least one byte
    if len(text.encode("utf-8")) <= max_tokens:
        return text
    encoder = _get_encoder()
    tokens = encoder.encode(text)
    if len(tokens) <= max_tokens:
        return text
    logger.info("Knowledge base truncated from %d to %d tokens", len(tokens), max_tokens)
    return encoder.decode(tokens[:max_tokens]) + TRUNCATION_MARKER


def build_project_system_prompt(project: Dict[str, Any], knowledge_base: Optional[str]) -> str:
    description = (project.get("description") or "").strip()
    description_line = f"Project Description: {description}" if description else ""
    knowledge = (knowledge_base or "").strip() or EMPTY_KNOWLEDGE_BASE

    return (
        "You are an AI assistant with access to a specific project's documents. "
        "You have been given a knowledge base containing the full text of all documents "
        f"in the project \"{project.get('name', '')}\".\n\n"
        f"{description_line}\n\n"
        "KNOWLEDGE BASE:\n"
        f"{knowledge}\n\n"
        "END OF KNOWLEDGE BASE\n\n"
        "Instructions:\n"
        "1. Answer questions based ONLY on the information provided in the knowledge base above\n"
        "2. If a question cannot be answered from the knowledge base, clearly state that the "
        "information is not available in the provided documents\n"
        "3. When citing information, try to indicate which document it comes from if possible\n"
        "4. Be helpful, accurate, and comprehensive in your responses\n"
        "5. If asked about the project or documents, provide relevant details from the knowledge base\n"
        "6. Feel free to make connections between different pieces of information from various documents\n"
        "7. If the user asks for summaries or analysis, provide detailed responses based on the "
        "available content\n\n"
        "Remember: Your knowledge is limited to the documents in this project's knowledge base. "
        "Do not use external knowledge unless specifically requested and clearly distinguished "
        "from the document-based information."
    )


def build_document_qa_prompt(project: Dict[str, Any], extracted_text: str, question: str) -> str:
    """Single-turn prompt for the non-streaming project chat."""
    return (
        f"You are an AI assistant helping analyze documents for the project \"{project.get('name', '')}\".\n\n"
        "Here are the extracted documents:\n"
        f"{extracted_text}\n\n"
        f"User Question: {question}\n\n"
        "Please provide a helpful response based on the document content above. "
        "If the question cannot be answered from the provided documents, please say so clearly."
    )


DOCUMENT_QA_SYSTEM_PROMPT = (
    "You are a helpful assistant that analyzes documents and answers questions based on their "
    "content. Always base your responses on the provided document text."
)
