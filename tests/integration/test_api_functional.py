import json

from fastapi.testclient import TestClient

from reader_agent.agent import prompts
from reader_agent.agent.orchestrator import Orchestrator
from reader_agent.api.main import _build_stores, create_app
from reader_agent.config import ModelProvider, RetrievalConfig, Settings
from reader_agent.ingest.pipeline import KnowledgeIndexer
from reader_agent.retrieval.retriever import RetrievalEngine
from reader_agent.retrieval.vector_store import EmbeddingStore


class KeywordLLM:
    """Embeds by keyword presence and answers according to the system prompt."""

    keywords = ("encrypt", "holiday", "storage")

    async def chat(self, model, messages) -> str:
        system = messages[0].content
        if system == prompts.QUERY_TRANSFORM_SYSTEM_PROMPT:
            return messages[-1].content.rsplit("Latest message:\n", 1)[-1].split("\n")[0]
        if system == prompts.ANSWER_SYNTHESIS_SYSTEM_PROMPT:
            return "Customer data is encrypted at rest."
        if system == prompts.POLISH_SYSTEM_PROMPT:
            return "Polished."
        return "Hi there"

    async def chat_stream(self, model, messages):
        for piece in ["Hi", " there"]:
            yield piece

    async def embed(self, model, inputs) -> list[list[float]]:
        return [[1.0 if word in text.lower() else 0.0 for word in self.keywords] for text in inputs]


def _client(settings: Settings | None = None) -> TestClient:
    settings = settings or Settings(
        providers=[
            ModelProvider(
                id="local",
                base_url="http://llm.local/v1",
                chat_model="chat-m",
                embedding_model="embed-m",
            )
        ],
        default_provider_id="local",
    )
    llm = KeywordLLM()
    stores = {"notes": EmbeddingStore("notes", use_index=False), "faqs": EmbeddingStore("faqs", use_index=False)}
    retrieval = RetrievalEngine(stores, settings, client_factory=lambda base_url, api_key: llm)
    orchestrator = Orchestrator(settings, retrieval=retrieval, client_factory=lambda base_url, api_key: llm)
    return TestClient(create_app(orchestrator, KnowledgeIndexer(retrieval)))


def test_api_index_chat_retrieve_and_delete() -> None:
    client = _client()

    note_resp = client.put(
        "/notes/policy",
        json={
            "title": "Encryption policy",
            "content": "We encrypt customer data at rest.",
            "source_url": "https://intranet.example/policy",
        },
    )
    assert note_resp.status_code == 200
    assert note_resp.json() == {"id": "policy", "indexed": True}
    assert client.put("/faqs/leave", json={"question": "Holiday rules?", "answer": "See HR."}).json()["indexed"]

    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["chat_model"] == "chat-m"
    assert health["collections"] == {"notes": 1, "faqs": 1}

    chat_resp = client.post("/chat", json={"user_input": "How do we encrypt data?", "top_k": 1})
    assert chat_resp.status_code == 200
    payload = chat_resp.json()
    assert payload["answer"] == "Customer data is encrypted at rest."
    assert payload["trace"]["retrieved_chunks"][0]["origin_id"] == "policy"
    assert "Source: https://intranet.example/policy" in payload["trace"]["synthesis_prompt"]

    retrieve_resp = client.post("/retrieve", json={"query": "holiday", "collections": ["faqs"]})
    assert retrieve_resp.status_code == 200
    assert [chunk["origin_type"] for chunk in retrieve_resp.json()["chunks"]] == ["faq"]

    assert client.delete("/notes/policy").json() == {"id": "policy", "deleted": True}
    assert client.get("/health").json()["collections"]["notes"] == 0


def test_api_retrieve_unknown_collection_is_bad_request() -> None:
    resp = _client().post("/retrieve", json={"query": "x", "collections": ["videos"]})

    assert resp.status_code == 400
    assert "videos" in resp.json()["detail"]


def test_api_chat_without_model_is_bad_request() -> None:
    resp = _client(Settings()).post("/chat", json={"user_input": "hello"})

    assert resp.status_code == 400
    assert "Chat model is not configured" in resp.json()["detail"]


def test_api_chat_stream_returns_ndjson_chunks() -> None:
    client = _client()

    resp = client.post("/chat/stream", json={"user_input": "hello", "rag_enabled": False})

    assert resp.status_code == 200
    chunks = [json.loads(line) for line in resp.text.splitlines() if line]
    assert [chunk["content"] for chunk in chunks] == ["Hi", " there", ""]
    assert chunks[-1]["done"] is True
    assert chunks[-1]["error"] is None


def test_api_polish_is_cached() -> None:
    client = _client()

    for _ in range(2):
        resp = client.post("/polish", json={"text": "rough draft", "style": "formal"})
        assert resp.json() == {"text": "Polished."}

    stats = client.get("/cache/stats").json()
    assert stats["polish"]["hits"] == 1
    assert stats["polish"]["misses"] == 1
    assert stats["translate"]["size"] == 0


def test_api_zero_embedding_on_index_is_bad_gateway() -> None:
    resp = _client().put("/notes/misc", json={"title": "Misc", "content": "nothing here"})

    assert resp.status_code == 502
    assert "No embedding vector generated for note misc" in resp.json()["detail"]


def test_build_stores_applies_the_configured_candidate_multiplier(monkeypatch) -> None:
    monkeypatch.delenv("READER_AGENT_DB_PATH", raising=False)
    stores = _build_stores(RetrievalConfig(candidate_multiplier=4, collections=["notes"]))
    store = stores["notes"]
    store.upsert("a", "A", [1.0, 0.0], {"tags": ["misc"]})
    store.upsert("b", "B", [0.9, 0.1], {"tags": ["misc"]})
    store.upsert("c", "C", [0.8, 0.2], {"tags": ["misc"]})
    store.upsert("d", "D", [0.0, 1.0], {"tags": ["python"]})

    assert list(stores) == ["notes"]
    assert [result.id for result in store.query([1.0, 0.0], top_k=1, tags=["python"])] == ["d"]
