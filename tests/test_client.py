from studio.client import StudioClient
from studio.models import ComponentState


class _Resp:
    def __init__(self, data):
        self._data = data

    def raise_for_status(self):
        return None

    def json(self):
        return self._data


class FakeSession:
    def __init__(self):
        self.headers = {}
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        return _Resp({"session": {"id": "s1"}})

    def close(self):
        pass


class ManualTimer:
    def __init__(self, interval, fn):
        self.fn = fn

    def start(self):
        pass

    def cancel(self):
        self.fn = None


def test_headers_and_update_component():
    fake = FakeSession()
    client = StudioClient("http://studio.local/", user_id="alice", api_key="k1", session=fake)
    assert fake.headers == {"x-api-key": "k1", "x-user-id": "alice"}
    client.update_component("s1", ComponentState(jsx="<A/>", css=".a{}"))
    method, url, kwargs = fake.calls[0]
    assert (method, url) == ("PUT", "http://studio.local/sessions/s1")
    assert kwargs["json"] == {"currentComponent": {"jsx": "<A/>", "css": ".a{}"}}


def test_editor_sync_pushes_through_put():
    fake = FakeSession()
    client = StudioClient("http://studio.local", user_id="alice", session=fake)
    timers = []

    def factory(interval, fn):
        t = ManualTimer(interval, fn)
        timers.append(t)
        return t

    sync = client.editor_sync("s1", timer_factory=factory)
    sync.edit(jsx="<A/>")
    sync.edit(jsx="<AB/>")
    timers[-1].fn()
    assert len(fake.calls) == 1
    assert fake.calls[0][2]["json"]["currentComponent"]["jsx"] == "<AB/>"
