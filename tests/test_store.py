import pytest

from studio.errors import PersistenceFailure
from studio.models import Session
from studio.store import FileSessionStore, InMemorySessionStore


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    return FileSessionStore(tmp_path / "sessions")


def test_reads_are_independent_copies(store):
    s = Session(userId="alice")
    store.save(s)
    a = store.find_by_id(s.id)
    a.title = "changed locally"
    assert store.find_by_id(s.id).title == "New Component Session"


def test_find_one_applies_filter(store):
    s = Session(userId="alice")
    store.save(s)
    assert store.find_one({"id": s.id, "userId": "alice", "isActive": True}) is not None
    assert store.find_one({"id": s.id, "userId": "bob"}) is None
    assert store.find_one({"userId": "alice"}).id == s.id


def test_find_sorts_descending_and_pages(store):
    for t in ["a", "c", "b"]:
        store.save(Session(userId="alice", title=t))
    titles = [d.title for d in store.find({"userId": "alice"}, sort_by="title")]
    assert titles == ["c", "b", "a"]
    assert [d.title for d in store.find({"userId": "alice"}, sort_by="title", skip=1, limit=1)] == ["b"]
    assert store.count_documents({"userId": "alice"}) == 3


def test_unknown_sort_field_falls_back(store):
    store.save(Session(userId="alice"))
    assert len(store.find({"userId": "alice"}, sort_by="__class__")) == 1


def test_file_store_skips_corrupt_documents(tmp_path):
    store = FileSessionStore(tmp_path)
    good = Session(userId="alice")
    store.save(good)
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert [d.id for d in store.find({"userId": "alice"})] == [good.id]
    with pytest.raises(PersistenceFailure):
        store.find_by_id("broken")


def test_file_store_rejects_unsafe_ids(tmp_path):
    store = FileSessionStore(tmp_path)
    assert store.find_by_id("../etc/passwd") is None
    with pytest.raises(PersistenceFailure):
        store.save(Session(id="../x", userId="alice"))


def test_file_store_leaves_no_tmp_files(tmp_path):
    store = FileSessionStore(tmp_path)
    s = Session(userId="alice")
    store.save(s)
    store.save(s)
    assert sorted(p.name for p in tmp_path.iterdir()) == [f"{s.id}.json"]
