import pytest
from fastapi.testclient import TestClient

from studio import auth
from studio import main as main_mod
from studio import ratelimit
from studio.cache import FileCache, NullCache
from studio.generator import ComponentGenerator
from studio.ledger import SessionLedger
from studio.main import app
from studio.pipeline import GenerationPipeline
from studio.store import InMemorySessionStore

client = TestClient(app)

ALICE = {"x-user-id": "alice"}

REPLY = '{"jsx": "export default function Btn() { return <button/>; }", "css": ".btn{}", "explanation": "A button"}'


class FakeComplete:
    def __init__(self, text=REPLY, fail=False):
        self.text = text
        self.fail = fail
        self.prompts = []

    def __call__(self, model, system_prompt, user_prompt):
        self.prompts.append((system_prompt, user_prompt))
        if self.fail:
            raise RuntimeError("provider down")
        return self.text


@pytest.fixture()
def fake(monkeypatch):
    monkeypatch.setattr(auth, "API_KEYS", {})
    store = InMemorySessionStore()
    monkeypatch.setattr(main_mod, "store", store)
    monkeypatch.setattr(main_mod, "ledger", SessionLedger(store))
    monkeypatch.setattr(main_mod, "cache", NullCache())
    complete = FakeComplete()
    monkeypatch.setattr(
        main_mod, "pipeline", GenerationPipeline(ComponentGenerator(models=["m1", "m2"], complete=complete), NullCache())
    )
    ratelimit._reset()
    yield complete
    ratelimit._reset()


def _session(**body):
    return client.post("/sessions", json=body, headers=ALICE).json()["session"]


def test_generate_updates_session(fake):
    s = _session(settings={"framework": "vue"})
    r = client.post("/ai/generate", json={"prompt": "a button", "sessionId": s["id"]}, headers=ALICE)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["generatedCode"]["css"] == ".btn{}"
    assert body["chatMessage"]["role"] == "assistant"
    assert body["chatMessage"]["metadata"]["generatedCode"]["css"] == ".btn{}"
    assert "X-RateLimit-Remaining" in r.headers
    assert "vue" in fake.prompts[0][0]

    got = client.get(f"/sessions/{s['id']}", headers=ALICE).json()["session"]
    assert len(got["chatHistory"]) == 2
    assert got["currentComponent"]["css"] == ".btn{}"
    assert got["stats"]["generationsCount"] == 1


def test_prompt_length_limits(fake):
    s = _session()
    r = client.post("/ai/generate", json={"prompt": "ab", "sessionId": s["id"]}, headers=ALICE)
    assert r.status_code == 400
    assert r.json()["details"][0]["path"] == "prompt"
    r = client.post("/ai/refine", json={"refinementPrompt": "x" * 1001, "sessionId": s["id"]}, headers=ALICE)
    assert r.status_code == 400


def test_generate_for_foreign_session_is_404(fake):
    s = _session()
    r = client.post("/ai/generate", json={"prompt": "a button", "sessionId": s["id"]}, headers={"x-user-id": "bob"})
    assert r.status_code == 404
    assert fake.prompts == []


def test_provider_outage_returns_mock_not_error(fake):
    fake.fail = True
    s = _session()
    r = client.post("/ai/generate", json={"prompt": "a table", "sessionId": s["id"]}, headers=ALICE)
    assert r.status_code == 200
    assert r.json()["generatedCode"]["mock"] is True
    assert len(fake.prompts) == 2


def test_refine_uses_current_component_and_archives(fake):
    s = _session()
    client.post("/ai/generate", json={"prompt": "a button", "sessionId": s["id"]}, headers=ALICE)
    fake.text = '{"jsx": "export default function Btn() { return <a/>; }", "css": ".red{}"}'
    r = client.post("/ai/refine", json={"refinementPrompt": "make it red", "sessionId": s["id"]}, headers=ALICE)
    assert r.status_code == 200
    assert r.json()["refinedCode"]["css"] == ".red{}"
    assert "<button/>" in fake.prompts[-1][1]

    got = client.get(f"/sessions/{s['id']}", headers=ALICE).json()["session"]
    assert len(got["chatHistory"]) == 4
    assert got["componentVersions"][0]["css"] == ".btn{}"
    assert got["chatHistory"][-1]["metadata"]["isRefinement"] is True


def test_variations_do_not_touch_session(fake):
    s = _session()
    r = client.post("/ai/generate-variations", json={"prompt": "a card", "sessionId": s["id"], "count": 2}, headers=ALICE)
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert [v["id"] for v in body["variations"]] == [1, 2]
    got = client.get(f"/sessions/{s['id']}", headers=ALICE).json()["session"]
    assert got["chatHistory"] == []
    r = client.post("/ai/generate-variations", json={"prompt": "a card", "sessionId": s["id"], "count": 6}, headers=ALICE)
    assert r.status_code == 400


def test_generate_with_image(fake):
    s = _session()
    r = client.post(
        "/ai/generate-with-image",
        data={"prompt": "like this", "sessionId": s["id"]},
        files={"image": ("shot.png", b"\x89PNG fake", "image/png")},
        headers=ALICE,
    )
    assert r.status_code == 200, r.text
    assert "[Image analysis would go here" in fake.prompts[0][1]
    got = client.get(f"/sessions/{s['id']}", headers=ALICE).json()["session"]
    user = got["chatHistory"][0]
    assert user["content"] == "like this"
    assert user["metadata"]["hasImage"] is True
    assert user["metadata"]["imageUrl"].startswith("data:image/png;base64,")


def test_generate_with_image_is_never_served_from_cache(fake, monkeypatch, tmp_path):
    cache = FileCache(tmp_path / "ai")
    monkeypatch.setattr(
        main_mod, "pipeline", GenerationPipeline(ComponentGenerator(models=["m1"], complete=fake), cache)
    )
    s = _session()
    for shot in (b"\x89PNG first", b"\x89PNG second"):
        r = client.post(
            "/ai/generate-with-image",
            data={"prompt": "like this", "sessionId": s["id"]},
            files={"image": ("shot.png", shot, "image/png")},
            headers=ALICE,
        )
        assert r.status_code == 200, r.text
    assert len(fake.prompts) == 2
    assert list((tmp_path / "ai").iterdir()) == []


def test_generate_with_image_rejects_non_images(fake):
    s = _session()
    r = client.post(
        "/ai/generate-with-image",
        data={"prompt": "like this", "sessionId": s["id"]},
        files={"image": ("notes.txt", b"hello", "text/plain")},
        headers=ALICE,
    )
    assert r.status_code == 400
    r = client.post("/ai/generate-with-image", data={"prompt": "x", "sessionId": s["id"]}, headers=ALICE)
    assert r.status_code == 400


def test_suggestions(fake):
    s = _session()
    r = client.get(f"/ai/suggestions/{s['id']}", headers=ALICE)
    assert r.status_code == 200
    assert len(r.json()["suggestions"]) == 4


def test_rate_limit_returns_429(fake, monkeypatch):
    monkeypatch.setattr(ratelimit, "_default", ratelimit.FixedWindowLimiter(window_seconds=60, max_requests=1))
    s = _session()
    ok = client.post("/ai/generate", json={"prompt": "a button", "sessionId": s["id"]}, headers=ALICE)
    assert ok.status_code == 200
    r = client.post("/ai/generate", json={"prompt": "a button", "sessionId": s["id"]}, headers=ALICE)
    assert r.status_code == 429
    assert "Retry-After" in r.headers
    assert r.json()["error"] == "rate limit exceeded"


def test_llm_status_reports_models_and_cache(fake):
    r = client.get("/llm/status")
    body = r.json()
    assert body["models"] == ["m1", "m2"]
    assert body["cache"] == "none"
