"""Language model client contract and the LangChain OpenAI-compatible adapter."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, Literal, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant", "tool"]


class ChatImage(BaseModel):
    mime_type: str = "image/png"
    data: str = Field(min_length=1, description="Base64 encoded image bytes")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class ChatMessage(BaseModel):
    role: Role
    content: str
    images: list[ChatImage] = Field(default_factory=list)


class LLMClient(Protocol):
    """What the orchestrator needs from a model backend.

    Implementations may additionally provide
    `chat_stream(model, messages) -> AsyncIterator[str]`; callers check for it
    with `supports_streaming`.
    """

    async def chat(self, model: str, messages: list[ChatMessage]) -> str:
        ...

    async def embed(self, model: str, inputs: list[str]) -> list[list[float]]:
        ...


def supports_streaming(client: Any) -> bool:
    return callable(getattr(client, "chat_stream", None))


class LangChainLLMClient:
    """OpenAI-compatible endpoint accessed through `langchain_openai`."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        temperature: float | None = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.base_url = base_url
        # Local gateways accept any key but the OpenAI SDK insists on one.
        self._api_key = api_key or "EMPTY"
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds
        self._chat_models: dict[str, Any] = {}
        self._embedding_models: dict[str, Any] = {}

    async def chat(self, model: str, messages: list[ChatMessage]) -> str:
        response = await self._chat_model(model).ainvoke(to_langchain_messages(messages))
        return content_text(response.content)

    async def chat_stream(self, model: str, messages: list[ChatMessage]) -> AsyncIterator[str]:
        async for chunk in self._chat_model(model).astream(to_langchain_messages(messages)):
            text = content_text(chunk.content)
            if text:
                yield text

    async def embed(self, model: str, inputs: list[str]) -> list[list[float]]:
        return await self._embedding_model(model).aembed_documents(inputs)

    def _chat_model(self, model: str) -> Any:
        chat_model = self._chat_models.get(model)
        if chat_model is None:
            from langchain_openai import ChatOpenAI

            kwargs: dict[str, Any] = {
                "model": model,
                "base_url": self.base_url,
                "api_key": self._api_key,
                "timeout": self._timeout_seconds,
            }
            if self._temperature is not None:
                kwargs["temperature"] = self._temperature
            chat_model = ChatOpenAI(**kwargs)
            self._chat_models[model] = chat_model
            logger.debug(f"[LLM] Created chat model {model} at {self.base_url}")
        return chat_model

    def _embedding_model(self, model: str) -> Any:
        embeddings = self._embedding_models.get(model)
        if embeddings is None:
            from langchain_openai import OpenAIEmbeddings

            embeddings = OpenAIEmbeddings(
                model=model,
                base_url=self.base_url,
                api_key=self._api_key,
                timeout=self._timeout_seconds,
                check_embedding_ctx_length=False,
            )
            self._embedding_models[model] = embeddings
            logger.debug(f"[LLM] Created embedding model {model} at {self.base_url}")
        return embeddings


def to_langchain_messages(messages: list[ChatMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        elif message.images:
            content: list[str | dict[str, Any]] = [{"type": "text", "text": message.content}]
            content.extend(
                {"type": "image_url", "image_url": {"url": image.data_url}}
                for image in message.images
            )
            converted.append(HumanMessage(content=content))
        else:
            # Tool output is replayed as user text; no tool_call ids exist here.
            converted.append(HumanMessage(content=message.content))
    return converted


def content_text(content: Any) -> str:
    """Flatten LangChain message content (a string or a list of parts)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content)
