"""Prompt templates for chat, retrieval and the writing-assistant tasks."""

from __future__ import annotations

from langchain_core.prompts import PromptTemplate

CHAT_SYSTEM_PROMPT = """
You are a reading assistant embedded in the user's browser.
Answer clearly and concisely. When the user shares selected text, focus on it.
If you are not sure about something, say so instead of guessing.
""".strip()

QUERY_TRANSFORM_SYSTEM_PROMPT = """
You rewrite the user's latest message into a standalone search query for a
personal knowledge base of notes and FAQs.
Resolve pronouns and references using the conversation. Keep the user's language.
Reply with the query only, without quotes or explanations.
""".strip()

QUERY_TRANSFORM_USER_PROMPT = PromptTemplate.from_template(
    "Conversation so far:\n{history}\n\nLatest message:\n{user_input}\n\nStandalone query:"
)

ANSWER_SYNTHESIS_SYSTEM_PROMPT = """
You answer questions using the context fragments provided with each question.
Prefer information from the fragments over general knowledge, and mention the
source when a fragment names one. If the fragments do not contain the answer,
say that the saved notes do not cover it and answer from general knowledge.
""".strip()

ANSWER_SYNTHESIS_USER_PROMPT = PromptTemplate.from_template(
    "Question:\n{original_input}\n\n{context}\n\n"
    "Answer the question using the context fragments above."
)

TRANSLATE_SYSTEM_PROMPT = """
You are a professional translator. Translate faithfully and naturally,
preserving formatting, markdown and code. Reply with the translation only.
""".strip()

TRANSLATE_USER_PROMPT = PromptTemplate.from_template(
    "Translate the following text into {target_lang}:\n\n{text}"
)

TRANSLATE_DICTIONARY_SYSTEM_PROMPT = PromptTemplate.from_template(
    "You are a bilingual dictionary from {source_lang} to {target_lang}. "
    "For the given word or short phrase give the pronunciation when useful, "
    "the part of speech, the common meanings in {target_lang}, and one or two "
    "short example sentences. Use compact markdown."
)

TRANSLATE_DICTIONARY_USER_PROMPT = PromptTemplate.from_template(
    "Look up ({source_lang} -> {target_lang}): {text}"
)

POLISH_SYSTEM_PROMPT = """
You are an experienced editor. Improve clarity, grammar and flow while keeping
the author's meaning, language and formatting. Reply with the revised text only.
""".strip()

POLISH_USER_PROMPT = PromptTemplate.from_template(
    "Polish the following text in a {style} style:\n\n{text}"
)

NOTE_SYSTEM_PROMPT = """
You turn a passage the user selected while reading into a concise study note.
Reply with a single JSON object and nothing else:
{"title": "short title", "content": "markdown body", "tags": ["up to five tags"]}
""".strip()

NOTE_USER_PROMPT = PromptTemplate.from_template(
    "Selected text:\n{selected_text}\n\nSource: {source_url}\n\n{context}"
)

ASK_WITH_CONTEXT_PROMPT = PromptTemplate.from_template(
    "Explain the following passage and answer any question it raises.\n\n"
    "Passage:\n{text}\n\nSource: {source_url}"
)


def render_history(history: list[tuple[str, str]]) -> str:
    if not history:
        return "(none)"
    return "\n".join(f"{role}: {content}" for role, content in history)


def render_context_fragments(context: list[str]) -> str:
    return "\n\n".join(
        f"Context fragment {index}:\n{fragment}"
        for index, fragment in enumerate(context, start=1)
    )


def render_related_notes(context: list[str]) -> str:
    if not context:
        return ""
    return "Related notes:\n" + render_context_fragments(context)
