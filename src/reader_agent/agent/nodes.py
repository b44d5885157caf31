"""Single-step model tasks used by the orchestrator."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, Field

from reader_agent.agent import prompts
from reader_agent.cache import LRUCache, generate_cache_key
from reader_agent.config import LLMConfig, ModelType
from reader_agent.llm.client import ChatImage, ChatMessage, LLMClient

logger = logging.getLogger(__name__)

_CJK_PATTERN = re.compile(r"[\u4e00-\u9fff]")
_JSON_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_MARKDOWN_FENCE_PATTERN = re.compile(r"^```markdown\s*([\s\S]*?)\s*```$")
_PLAIN_FENCE_PATTERN = re.compile(r"^```\s*([\s\S]*?)\s*```$")
_LINK_PATTERN = re.compile(r"https?://[^\s)]+", re.IGNORECASE)
_MAX_TAGS = 5
_MAX_TITLE_LENGTH = 80


class TranslateRequest(BaseModel):
    text: str = Field(min_length=1)
    target_lang: str = Field(min_length=1)
    source_lang: str | None = None
    llm_config: LLMConfig | None = None


class PolishRequest(BaseModel):
    text: str = Field(min_length=1)
    style: str | None = None
    llm_config: LLMConfig | None = None


class NoteRequest(BaseModel):
    selected_text: str = Field(min_length=1)
    source_url: str | None = None
    context: list[str] = Field(default_factory=list)
    rag_enabled: bool = True
    llm_config: LLMConfig | None = None


class NoteResult(BaseModel):
    title: str
    content: str
    tags: list[str] = Field(default_factory=list)


async def transform_query(
    client: LLMClient,
    model: str,
    user_input: str,
    history: list[ChatMessage],
) -> str:
    """Rewrite `user_input` into a standalone query; the raw input on any failure."""
    user_prompt = prompts.QUERY_TRANSFORM_USER_PROMPT.format(
        history=prompts.render_history([(message.role, message.content) for message in history]),
        user_input=user_input,
    )
    try:
        result = await client.chat(
            model,
            [
                ChatMessage(role="system", content=prompts.QUERY_TRANSFORM_SYSTEM_PROMPT),
                ChatMessage(role="user", content=user_prompt),
            ],
        )
    except Exception as exc:
        logger.warning(f"[QUERY_TRANSFORM] Failed, using original input: {exc}")
        return user_input

    transformed = result.strip()
    logger.info(f"[QUERY_TRANSFORM] {user_input[:100]!r} -> {transformed[:100]!r}")
    return transformed or user_input


def build_synthesis_prompt(original_input: str, context: list[str]) -> str:
    return prompts.ANSWER_SYNTHESIS_USER_PROMPT.format(
        original_input=original_input,
        context=prompts.render_context_fragments(context),
    )


async def synthesize(
    client: LLMClient,
    model: str,
    user_prompt: str,
    history: list[ChatMessage],
) -> str:
    messages = [
        ChatMessage(role="system", content=prompts.ANSWER_SYNTHESIS_SYSTEM_PROMPT),
        *history,
        ChatMessage(role="user", content=user_prompt),
    ]
    result = await client.chat(model, messages)
    return result.strip()


def build_chat_messages(
    user_input: str,
    history: list[ChatMessage],
    model_type: ModelType = "llm",
    images: list[ChatImage] | None = None,
) -> list[ChatMessage]:
    """System prompt, full history, then the user turn (with images for vision models)."""
    attached = list(images or []) if model_type == "vlm" else []
    return [
        ChatMessage(role="system", content=prompts.CHAT_SYSTEM_PROMPT),
        *history,
        ChatMessage(role="user", content=user_input, images=attached),
    ]


def is_dictionary_lookup(text: str) -> bool:
    """Short input gets a dictionary-style entry instead of a plain translation."""
    raw = text.strip()
    if _CJK_PATTERN.search(raw):
        return len(raw) <= 4
    return len(raw.split()) <= 3


async def translate(
    client: LLMClient,
    model: str,
    request: TranslateRequest,
    cache: LRUCache[str, str],
) -> str:
    raw = request.text.strip()
    dictionary = is_dictionary_lookup(raw)
    cache_key = generate_cache_key(
        {
            "text": request.text,
            "target_lang": request.target_lang,
            "is_dictionary": dictionary,
            "model": _override_model(request.llm_config),
        }
    )
    cached = cache.get(cache_key)
    if cached is not None:
        logger.info("[TRANSLATE] Cache hit")
        return cached

    if dictionary:
        source_lang = request.source_lang or "the source language"
        system = prompts.TRANSLATE_DICTIONARY_SYSTEM_PROMPT.format(
            source_lang=source_lang, target_lang=request.target_lang
        )
        user = prompts.TRANSLATE_DICTIONARY_USER_PROMPT.format(
            source_lang=source_lang, target_lang=request.target_lang, text=raw
        )
    else:
        system = prompts.TRANSLATE_SYSTEM_PROMPT
        user = prompts.TRANSLATE_USER_PROMPT.format(target_lang=request.target_lang, text=raw)

    result = await client.chat(
        model,
        [ChatMessage(role="system", content=system), ChatMessage(role="user", content=user)],
    )
    cleaned = strip_markdown_wrapper(result)
    cache.set(cache_key, cleaned)
    logger.info(f"[TRANSLATE] Cached result, stats: {cache.stats()}")
    return cleaned


async def polish(
    client: LLMClient,
    model: str,
    request: PolishRequest,
    cache: LRUCache[str, str],
) -> str:
    cache_key = generate_cache_key(
        {
            "text": request.text,
            "style": request.style or "default",
            "model": _override_model(request.llm_config),
        }
    )
    cached = cache.get(cache_key)
    if cached is not None:
        logger.info("[POLISH] Cache hit")
        return cached

    result = await client.chat(
        model,
        [
            ChatMessage(role="system", content=prompts.POLISH_SYSTEM_PROMPT),
            ChatMessage(
                role="user",
                content=prompts.POLISH_USER_PROMPT.format(
                    style=request.style or "natural", text=request.text
                ),
            ),
        ],
    )
    cleaned = strip_markdown_wrapper(result)
    cache.set(cache_key, cleaned)
    logger.info(f"[POLISH] Cached result, stats: {cache.stats()}")
    return cleaned


async def generate_note(
    client: LLMClient,
    model: str,
    selected_text: str,
    source_url: str | None = None,
    context: list[str] | None = None,
) -> NoteResult:
    user = prompts.NOTE_USER_PROMPT.format(
        selected_text=selected_text,
        source_url=source_url or "",
        context=prompts.render_related_notes(context or []),
    )
    raw = await client.chat(
        model,
        [
            ChatMessage(role="system", content=prompts.NOTE_SYSTEM_PROMPT),
            ChatMessage(role="user", content=user),
        ],
    )

    fallback = NoteResult(title=derive_title(selected_text), content=selected_text.strip())
    note = parse_note(raw, fallback) or fallback

    links = extract_links(selected_text)
    if source_url and source_url not in links:
        links.append(source_url)
    if links:
        note.content = append_references(note.content, links)
    return note


def strip_markdown_wrapper(text: str) -> str:
    """Remove a ```markdown fence, or a plain ``` fence around multi-line output."""
    trimmed = text.strip()
    match = _MARKDOWN_FENCE_PATTERN.match(trimmed)
    if match:
        return match.group(1).strip()
    match = _PLAIN_FENCE_PATTERN.match(trimmed)
    if match and len(trimmed.split("\n")) > 3:
        return match.group(1).strip()
    return trimmed


def extract_json_payload(text: str) -> str | None:
    fenced = _JSON_FENCE_PATTERN.search(text)
    if fenced:
        return fenced.group(1).strip()
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        return text[first : last + 1]
    return None


def parse_note(raw: str, fallback: NoteResult) -> NoteResult | None:
    payload = extract_json_payload(raw)
    if payload is None:
        return None
    try:
        parsed: Any = json.loads(payload)
    except ValueError as exc:
        logger.warning(f"[NOTE] Model output is not valid JSON: {exc}")
        return None
    if not isinstance(parsed, dict):
        return None

    title = parsed.get("title")
    content = parsed.get("content")
    return NoteResult(
        title=title.strip() if isinstance(title, str) and title.strip() else fallback.title,
        content=content.strip() if isinstance(content, str) and content.strip() else fallback.content,
        tags=sanitize_tags(parsed.get("tags")),
    )


def sanitize_tags(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    tags = [tag.strip() for tag in value if isinstance(tag, str) and tag.strip()]
    return tags[:_MAX_TAGS]


def derive_title(selected_text: str) -> str:
    first_line = next((line.strip() for line in selected_text.split("\n") if line.strip()), "")
    return (first_line or selected_text)[:_MAX_TITLE_LENGTH].strip() or "Untitled"


def extract_links(text: str) -> list[str]:
    links: list[str] = []
    for match in _LINK_PATTERN.findall(text):
        link = re.sub(r"[)\],.;]*$", "", match.strip())
        if link and link not in links:
            links.append(link)
    return links


def append_references(content: str, links: list[str]) -> str:
    missing = [link for link in links if link not in content]
    if not missing:
        return content
    references = "\n".join(f"- {link}" for link in missing)
    separator = "\n\n" if content.strip() else ""
    return f"{content.strip()}{separator}**References:**\n{references}"


def _override_model(llm_config: LLMConfig | None) -> str:
    if llm_config is not None and llm_config.chat_model:
        return llm_config.chat_model
    return "default"
