import asyncio

from reader_agent.agent import nodes, prompts
from reader_agent.cache import LRUCache
from reader_agent.config import LLMConfig
from reader_agent.llm.client import ChatImage, ChatMessage


class RecordingChatClient:
    def __init__(self, reply: str = "reply") -> None:
        self.reply = reply
        self.calls: list[tuple[str, list[ChatMessage]]] = []

    async def chat(self, model: str, messages: list[ChatMessage]) -> str:
        self.calls.append((model, messages))
        return self.reply

    async def embed(self, model: str, inputs: list[str]) -> list[list[float]]:
        raise AssertionError("tasks must not embed")


class FailingChatClient(RecordingChatClient):
    async def chat(self, model: str, messages: list[ChatMessage]) -> str:
        raise RuntimeError("model offline")


def test_strip_markdown_wrapper() -> None:
    assert nodes.strip_markdown_wrapper("```markdown\n# Title\n```") == "# Title"
    assert nodes.strip_markdown_wrapper("```\nline one\nline two\n```") == "line one\nline two"
    assert nodes.strip_markdown_wrapper("```x```") == "```x```"
    assert nodes.strip_markdown_wrapper("  plain  ") == "plain"


def test_dictionary_lookup_thresholds() -> None:
    assert nodes.is_dictionary_lookup("serendipity")
    assert nodes.is_dictionary_lookup("break the ice")
    assert not nodes.is_dictionary_lookup("this sentence has five words")
    assert nodes.is_dictionary_lookup("你好世界")
    assert not nodes.is_dictionary_lookup("今天天气很好")


def test_parse_note_from_fenced_json() -> None:
    fallback = nodes.NoteResult(title="Fallback", content="Fallback body")
    raw = 'Here you go:\n```json\n{"title": " Caching ", "content": "LRU with TTL", "tags": ["a", "", 3, "b"]}\n```'

    note = nodes.parse_note(raw, fallback)

    assert note == nodes.NoteResult(title="Caching", content="LRU with TTL", tags=["a", "b"])


def test_parse_note_fills_missing_fields_from_fallback() -> None:
    fallback = nodes.NoteResult(title="Fallback", content="Fallback body")

    note = nodes.parse_note('{"title": "", "tags": "not-a-list"}', fallback)

    assert note == nodes.NoteResult(title="Fallback", content="Fallback body", tags=[])
    assert nodes.parse_note("no json here", fallback) is None
    assert nodes.parse_note("{broken", fallback) is None


def test_sanitize_tags_keeps_at_most_five() -> None:
    assert nodes.sanitize_tags(["a", "b", "c", "d", "e", "f"]) == ["a", "b", "c", "d", "e"]


def test_derive_title_uses_first_non_empty_line() -> None:
    assert nodes.derive_title("\n\n  First line  \nsecond") == "First line"
    assert nodes.derive_title("x" * 200) == "x" * 80
    assert nodes.derive_title("   ") == "Untitled"


def test_references_list_only_adds_missing_links() -> None:
    links = nodes.extract_links("See https://a.example/x). Also https://b.example/y, and https://a.example/x")

    assert links == ["https://a.example/x", "https://b.example/y"]
    assert nodes.append_references("Body mentions https://a.example/x", links) == (
        "Body mentions https://a.example/x\n\n**References:**\n- https://b.example/y"
    )
    assert nodes.append_references("", ["https://c.example"]) == "**References:**\n- https://c.example"


def test_generate_note_appends_source_url() -> None:
    client = RecordingChatClient('{"title": "T", "content": "Body", "tags": ["x"]}')

    note = asyncio.run(
        nodes.generate_note(client, "chat-model", "Selected text", "https://source.example", ["related"])
    )

    assert note.title == "T"
    assert note.tags == ["x"]
    assert note.content == "Body\n\n**References:**\n- https://source.example"
    user_prompt = client.calls[0][1][1].content
    assert "Selected text" in user_prompt
    assert "related" in user_prompt


def test_generate_note_falls_back_when_output_is_not_json() -> None:
    client = RecordingChatClient("I cannot produce JSON today.")

    note = asyncio.run(nodes.generate_note(client, "chat-model", "Heading\nDetails"))

    assert note.title == "Heading"
    assert note.content == "Heading\nDetails"
    assert note.tags == []


def test_transform_query_falls_back_to_raw_input() -> None:
    history = [ChatMessage(role="user", content="earlier question")]

    assert asyncio.run(nodes.transform_query(FailingChatClient(), "m", "what about it?", history)) == (
        "what about it?"
    )
    assert asyncio.run(nodes.transform_query(RecordingChatClient("   "), "m", "raw", history)) == "raw"


def test_transform_query_includes_history() -> None:
    client = RecordingChatClient("standalone question")
    history = [ChatMessage(role="user", content="earlier question")]

    assert asyncio.run(nodes.transform_query(client, "m", "and then?", history)) == "standalone question"
    system, user = client.calls[0][1]
    assert system.content == prompts.QUERY_TRANSFORM_SYSTEM_PROMPT
    assert "earlier question" in user.content
    assert "and then?" in user.content


def test_chat_messages_attach_images_only_for_vision_models() -> None:
    image = ChatImage(mime_type="image/png", data="aGVsbG8=")
    history = [ChatMessage(role="assistant", content="hi")]

    vision = nodes.build_chat_messages("describe", history, "vlm", [image])
    text_only = nodes.build_chat_messages("describe", history, "llm", [image])

    assert [message.role for message in vision] == ["system", "assistant", "user"]
    assert vision[-1].images == [image]
    assert text_only[-1].images == []


def test_translate_is_memoized_per_request_shape() -> None:
    client = RecordingChatClient("```markdown\nBonjour\n```")
    cache: LRUCache[str, str] = LRUCache(max_size=10, ttl=60)
    request = nodes.TranslateRequest(text="hello", target_lang="fr")

    first = asyncio.run(nodes.translate(client, "m", request, cache))
    second = asyncio.run(nodes.translate(client, "m", request, cache))
    asyncio.run(nodes.translate(client, "m", nodes.TranslateRequest(text="hello", target_lang="de"), cache))
    asyncio.run(
        nodes.translate(
            client,
            "m",
            nodes.TranslateRequest(text="hello", target_lang="fr", llm_config=LLMConfig(chat_model="other")),
            cache,
        )
    )

    assert first == second == "Bonjour"
    assert len(client.calls) == 3
    assert cache.stats().hits == 1


def test_translate_uses_dictionary_prompts_for_short_input() -> None:
    client = RecordingChatClient("entry")

    asyncio.run(
        nodes.translate(client, "m", nodes.TranslateRequest(text="ice", target_lang="fr"), LRUCache())
    )
    asyncio.run(
        nodes.translate(
            client,
            "m",
            nodes.TranslateRequest(text="a much longer sentence to translate", target_lang="fr"),
            LRUCache(),
        )
    )

    dictionary_system = client.calls[0][1][0].content
    sentence_system = client.calls[1][1][0].content
    assert dictionary_system != sentence_system
    assert sentence_system == prompts.TRANSLATE_SYSTEM_PROMPT


def test_polish_cache_key_includes_style() -> None:
    client = RecordingChatClient("polished")
    cache: LRUCache[str, str] = LRUCache()

    asyncio.run(nodes.polish(client, "m", nodes.PolishRequest(text="txt"), cache))
    asyncio.run(nodes.polish(client, "m", nodes.PolishRequest(text="txt"), cache))
    asyncio.run(nodes.polish(client, "m", nodes.PolishRequest(text="txt", style="formal"), cache))

    assert len(client.calls) == 2
    assert "formal" in client.calls[1][1][1].content
