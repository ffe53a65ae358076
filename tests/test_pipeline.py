from studio.cache import Cache, FileCache, NullCache
from studio.errors import CacheFailure
from studio.generator import ComponentGenerator
from studio.models import ComponentState, GeneratedPayload, GenerationContext
from studio.pipeline import GenerationPipeline, cache_key

FRESH = '{"jsx": "export default () => { return <i/>; }", "css": ".fresh{}", "explanation": "fresh"}'


class DictCache(Cache):
    backend = "dict"

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ttl_seconds=None):
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    def delete(self, key):
        self.data.pop(key, None)


class BrokenCache(Cache):
    backend = "broken"

    def get(self, key):
        raise CacheFailure("down")

    def set(self, key, value, ttl_seconds=None):
        raise CacheFailure("down")

    def delete(self, key):
        raise CacheFailure("down")


class CountingComplete:
    def __init__(self, text=FRESH, fail=False):
        self.text = text
        self.fail = fail
        self.calls = 0

    def __call__(self, model, system_prompt, user_prompt):
        self.calls += 1
        if self.fail:
            raise RuntimeError("provider down")
        return self.text


def _pipeline(cache=None, complete=None):
    complete = complete or CountingComplete()
    gen = ComponentGenerator(models=["m1"], complete=complete)
    return GenerationPipeline(gen, cache=cache, ttl_seconds=1800), complete


def test_cache_key_is_deterministic_and_prefixed():
    ctx = GenerationContext(framework="react", typescript=True)
    k1 = cache_key("a button", ctx)
    k2 = cache_key("a button", GenerationContext(typescript=True, framework="react"))
    assert k1 == k2
    assert k1.startswith("ai_cache:")


def test_cache_key_distinguishes_iteration_and_existing_code():
    fresh = GenerationContext()
    it_a = GenerationContext(isIteration=True, existingCode={"jsx": "<A/>", "css": ""})
    it_b = GenerationContext(isIteration=True, existingCode={"jsx": "<B/>", "css": ""})
    keys = {cache_key("p", fresh), cache_key("p", it_a), cache_key("p", it_b)}
    assert len(keys) == 3


def test_miss_then_hit_calls_generator_once():
    cache = DictCache()
    pipe, complete = _pipeline(cache)
    first = pipe.generate_cached("a card")
    second = pipe.generate_cached("a card")
    assert complete.calls == 1
    assert first.jsx == second.jsx
    key = cache_key("a card", GenerationContext())
    assert cache.ttls[key] == 1800


def test_invalid_cached_shape_is_ignored():
    cache = DictCache()
    key = cache_key("a card", GenerationContext())
    cache.data[key] = {"css": "only css"}
    pipe, complete = _pipeline(cache)
    out = pipe.generate_cached("a card")
    assert complete.calls == 1
    assert out.explanation == "fresh"
    assert cache.data[key]["jsx"] == out.jsx


def test_cache_failures_degrade_to_generator():
    pipe, complete = _pipeline(BrokenCache())
    out = pipe.generate_cached("a card")
    assert complete.calls == 1
    assert out.explanation == "fresh"


def test_mock_payloads_are_not_cached():
    cache = DictCache()
    pipe, complete = _pipeline(cache, CountingComplete(fail=True))
    out = pipe.generate_cached("a card")
    assert out.model_extra.get("mock") is True
    assert cache.data == {}


def test_stale_refinement_when_key_collides():
    # Same prompt and same context hash to the same key, so the cached payload
    # is returned and the provider is never asked to refine.
    cache = DictCache()
    original = ComponentState(jsx="<div/>", css="")
    ctx = GenerationContext()
    key = cache_key("make it blue", GenerationContext(isIteration=True, existingCode={"jsx": "<div/>", "css": ""}))
    stale = GeneratedPayload(jsx="<STALE/>", css=".stale{}", explanation="stale")
    cache.data[key] = stale.model_dump()

    pipe, complete = _pipeline(cache)
    out = pipe.refine_cached(original, "make it blue", ctx)
    assert out.jsx == "<STALE/>"
    assert complete.calls == 0


def test_refinement_of_different_code_misses_cache():
    cache = DictCache()
    pipe, complete = _pipeline(cache)
    pipe.refine_cached(ComponentState(jsx="<one/>"), "make it blue")
    pipe.refine_cached(ComponentState(jsx="<two/>"), "make it blue")
    assert complete.calls == 2


def test_file_cache_round_trip_and_expiry(tmp_path, monkeypatch):
    fc = FileCache(tmp_path / "cache")
    fc.set("k", {"jsx": "x"}, ttl_seconds=10)
    assert fc.get("k") == {"jsx": "x"}

    import studio.cache as cache_mod

    real_time = cache_mod.time.time
    monkeypatch.setattr(cache_mod.time, "time", lambda: real_time() + 11)
    assert fc.get("k") is None


def test_null_cache_always_misses():
    nc = NullCache()
    nc.set("k", {"jsx": "x"}, 10)
    assert nc.get("k") is None
