import asyncio
import re

import httpx
import sse_starlette.sse as sse_module

import todo_stream.config as cfg
from todo_stream.api.sse.todos import keepalive_record, stream_todos, todo_events
from todo_stream.api.templating import render_row, render_update
from todo_stream.core.models import Todo, TodoUpdate
from todo_stream.infra.db.sqlite import init_db
from todo_stream.infra.events.broker import MutationBus


def _use_settings(monkeypatch, **env):
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    cfg.get_settings.cache_clear()
    # sse-starlette keeps a process-wide exit event bound to the first loop
    # that waits on it; each asyncio.run needs a fresh one.
    app_status = getattr(sse_module, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        monkeypatch.setattr(app_status, "should_exit_event", None)


def _http_scope(path):
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.3"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"testserver"), (b"accept", b"text/event-stream")],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
        "state": {},
    }


class StreamClient:
    """Drives one streaming ASGI response and collects what it sends."""

    def __init__(self, on_start=None):
        self.on_start = on_start
        self.started = asyncio.Event()
        self.chunks: list[bytes] = []
        self._disconnected = asyncio.Event()
        self._task = None

    async def _send(self, message):
        if message["type"] == "http.response.start":
            if self.on_start is not None:
                self.on_start()
            self.started.set()
        elif message["type"] == "http.response.body" and message.get("body"):
            self.chunks.append(message["body"])

    async def _receive(self):
        await self._disconnected.wait()
        return {"type": "http.disconnect"}

    async def open(self, asgi_app, path="/todos/stream"):
        self._task = asyncio.ensure_future(asgi_app(_http_scope(path), self._receive, self._send))
        await asyncio.wait_for(self.started.wait(), timeout=5)

    async def wait_for(self, needle: bytes, timeout=5.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while needle not in self.body:
            if loop.time() > deadline:
                raise AssertionError(f"{needle!r} never arrived; got {self.body!r}")
            await asyncio.sleep(0.01)

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)

    async def close(self):
        self._disconnected.set()
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except asyncio.TimeoutError:
            pass


def test_delete_fragment_targets_row_by_dom_id():
    fragment = render_update(TodoUpdate.deleted(7))
    assert fragment == "<div hx-trigger='load' hx-swap='delete' hx-target='#todo-7'></div>"


def test_create_fragment_only_discards_matching_row():
    fragment = render_update(TodoUpdate.created(7))
    assert fragment == "<div sse-swap='Delete' hx-swap='delete' hx-target='closest #todo-7'></div>"


def test_row_fragment_targets_same_dom_id_and_escapes():
    html = render_row(Todo(id=7, description="<script>x</script>"))
    assert 'id="todo-7"' in html
    assert "&lt;script&gt;" in html
    assert 'hx-delete="/todos/7"' in html


def test_stream_emits_one_record_per_update():
    async def scenario():
        bus = MutationBus(capacity=10)
        events = todo_events(bus.subscribe())

        bus.publish(TodoUpdate.deleted(3))
        bus.publish(TodoUpdate.created(4))
        records = [await events.__anext__(), await events.__anext__()]
        await events.aclose()
        return bus, records

    bus, records = asyncio.run(scenario())
    assert [r.event for r in records] == ["Delete", "Create"]
    assert "#todo-3" in records[0].data
    assert "#todo-4" in records[1].data
    assert bus.subscriber_count == 0


def test_stream_survives_lag():
    async def scenario():
        bus = MutationBus(capacity=2)
        events = todo_events(bus.subscribe())
        bus.publish(TodoUpdate.deleted(1))
        record = await events.__anext__()

        # Four updates into a two-slot buffer while the reader is parked.
        for i in range(10, 14):
            bus.publish(TodoUpdate.deleted(i))
        after_lag = [await events.__anext__(), await events.__anext__()]
        await events.aclose()
        return record, after_lag

    record, after_lag = asyncio.run(scenario())
    assert "#todo-1'" in record.data
    assert "#todo-12'" in after_lag[0].data
    assert "#todo-13'" in after_lag[1].data


def test_stream_ends_when_bus_closes():
    async def scenario():
        bus = MutationBus(capacity=10)
        events = todo_events(bus.subscribe())
        pending = asyncio.ensure_future(events.__anext__())
        await asyncio.sleep(0.01)
        bus.close()
        try:
            await pending
        except StopAsyncIteration:
            return True
        return False

    assert asyncio.run(scenario()) is True


def test_disconnect_releases_subscription():
    async def scenario():
        bus = MutationBus(capacity=10)
        events = todo_events(bus.subscribe())
        pending = asyncio.ensure_future(events.__anext__())
        await asyncio.sleep(0.01)
        pending.cancel()
        try:
            await pending
        except asyncio.CancelledError:
            pass
        await events.aclose()
        return bus.subscriber_count

    assert asyncio.run(scenario()) == 0


def test_keepalive_is_a_comment_record(monkeypatch):
    _use_settings(monkeypatch, TODOS_KEEPALIVE_TEXT="still-here")
    try:
        encoded = keepalive_record().encode()
    finally:
        cfg.get_settings.cache_clear()
    assert encoded.startswith(b": still-here")


def test_stream_is_attached_before_response_starts(monkeypatch):
    _use_settings(monkeypatch)

    async def scenario():
        bus = MutationBus(capacity=10)
        response = await stream_todos(bus=bus)
        assert bus.subscriber_count == 1

        reached = []
        client = StreamClient(on_start=lambda: reached.append(bus.publish(TodoUpdate.deleted(5))))
        await client.open(response)
        await client.wait_for(b"#todo-5'")
        await client.close()
        return reached, client.body, bus.subscriber_count

    try:
        reached, body, remaining = asyncio.run(scenario())
    finally:
        cfg.get_settings.cache_clear()
    assert reached == [1]
    assert body.count(b"event: Delete") == 1
    assert remaining == 0


def test_unstarted_stream_releases_subscription(monkeypatch):
    _use_settings(monkeypatch)

    async def scenario():
        bus = MutationBus(capacity=10)
        response = await stream_todos(bus=bus)
        assert bus.subscriber_count == 1
        await response.background()
        return bus.subscriber_count

    try:
        assert asyncio.run(scenario()) == 0
    finally:
        cfg.get_settings.cache_clear()


def test_idle_stream_sends_one_keepalive_per_interval(monkeypatch):
    _use_settings(monkeypatch, TODOS_STREAM_KEEPALIVE_SEC="1", TODOS_KEEPALIVE_TEXT="idle-tick")

    async def scenario():
        bus = MutationBus(capacity=10)
        client = StreamClient()
        await client.open(await stream_todos(bus=bus))
        await asyncio.sleep(2.5)
        chunks = list(client.chunks)
        await client.close()
        return chunks

    try:
        chunks = asyncio.run(scenario())
    finally:
        cfg.get_settings.cache_clear()
    assert len(chunks) == 2
    assert all(chunk.startswith(b": idle-tick") for chunk in chunks)


def test_connected_client_receives_delete_over_http(monkeypatch, tmp_path):
    _use_settings(monkeypatch, TODOS_DATABASE_PATH=str(tmp_path / "todos_stream.db"))
    import todo_stream.api.main as main

    async def scenario():
        await init_db()
        main.app.state.bus = MutationBus(capacity=10)

        stream = StreamClient()
        await stream.open(main.app)

        transport = httpx.ASGITransport(app=main.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            resp = await client.post("/todos", data={"description": "buy milk"})
            assert resp.status_code == 200, resp.text
            todo_id = int(re.search(r'id="todo-(\d+)"', resp.text).group(1))

            resp = await client.delete(f"/todos/{todo_id}")
            assert resp.status_code == 200, resp.text

        await stream.wait_for(f"hx-target='#todo-{todo_id}'".encode())
        body = stream.body
        await stream.close()
        main.app.state.bus.close()
        return todo_id, body

    try:
        todo_id, body = asyncio.run(scenario())
    finally:
        cfg.get_settings.cache_clear()

    records = [r for r in body.replace(b"\r\n", b"\n").split(b"\n\n") if r.strip()]
    deletes = [r for r in records if r.startswith(b"event: Delete")]
    assert len(deletes) == 1
    assert f"hx-target='#todo-{todo_id}'".encode() in deletes[0]
    creates = [r for r in records if r.startswith(b"event: Create")]
    assert len(creates) == 1
    assert f"#todo-{todo_id}'".encode() in creates[0]
