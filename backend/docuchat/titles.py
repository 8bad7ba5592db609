import logging
import re

from . import llm
from .config import TITLE_MODEL

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"
MAX_TITLE_LENGTH = 50
FALLBACK_WORDS = 5
FALLBACK_MAX_LENGTH = 40

_QUOTES_RE = re.compile(r"^[\"']|[\"']$")


def fallback_title(message: str) -> str:
    """First few words of the message, capped for the sidebar."""
    title = " ".join(message.split(" ")[:FALLBACK_WORDS]).strip()
    if len(title) > FALLBACK_MAX_LENGTH:
        title = title[:FALLBACK_MAX_LENGTH] + "..."
    return title or DEFAULT_TITLE


def clean_title(raw: str) -> str:
    title = _QUOTES_RE.sub("", raw.strip())
    if title.endswith("."):
        title = title[:-1]
    return title.strip()


async def generate_title(message: str) -> str:
    prompt = (
        "Generate a very short title (3-6 words max) for a conversation that starts with this message. "
        "Just respond with the title, nothing else. No quotes, no punctuation at the end.\n\n"
        f"Message: \"{message[:500]}\"\n\n"
        "Title:"
    )
    try:
        output = await llm.run_prediction(
            TITLE_MODEL,
            {"prompt": prompt, "max_tokens": 20, "temperature": 0.7},
        )
    except Exception as e:
        logger.warning("Title generation failed, using fallback: %s", e)
        return fallback_title(message)

    title = clean_title(output)
    if not title or len(title) > MAX_TITLE_LENGTH:
        return fallback_title(message)
    return title
