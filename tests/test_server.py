import asyncio
import io
from pathlib import Path

import pytest
import websockets

from inkpress.errors import ConfigError, LayoutNotFoundError
from inkpress.server import DevServer, _ChangeHandler, _ReloadHandler


class DummyEvent:
    def __init__(self, path, is_directory=False):
        self.src_path = path
        self.is_directory = is_directory


def _handler(tmp_path, path, baseurl=""):
    handler = _ReloadHandler.__new__(_ReloadHandler)
    handler.path = path
    handler.directory = str(tmp_path)
    handler.baseurl = baseurl
    handler.command = "GET"
    handler.request_version = "HTTP/1.1"
    handler.server_version = ""
    handler.sys_version = ""
    handler._headers_buffer = []
    handler.headers = {}
    handler.rfile = io.BytesIO(b"")
    handler.wfile = io.BytesIO()
    handler.codes = []
    handler.sent_headers = []
    handler.send_response = lambda code, message=None: handler.codes.append(code)
    handler.send_header = lambda key, value: handler.sent_headers.append((key, value))
    handler.end_headers = lambda: None
    handler.send_error = lambda code, message=None: handler.codes.append(("error", code))
    return handler


def test_change_handler_skips_output(tmp_path):
    server = DevServer(tmp_path)
    server.output_dir.mkdir()

    called = {}

    def fake_rebuild(include_drafts):
        called["drafts"] = include_drafts

    server.rebuild = fake_rebuild
    handler = _ChangeHandler(server, include_drafts=True)

    handler.on_any_event(DummyEvent(str(server.output_dir / "index.html")))
    handler.on_any_event(DummyEvent(str(server._staging_dir / "index.html")))
    assert not called

    handler.on_any_event(DummyEvent(str(tmp_path / "site" / "index.md")))
    assert called["drafts"] is True


def test_change_handler_directory_event():
    server = DevServer(Path("."))
    handler = _ChangeHandler(server, include_drafts=False)
    handler.on_any_event(DummyEvent("ignored", is_directory=True))


def test_async_broadcast_drops_closed_clients():
    server = DevServer(Path("."))

    class GoodWS:
        def __init__(self):
            self.messages = []

        async def send(self, msg):
            self.messages.append(msg)

    class ClosedWS:
        async def send(self, msg):
            raise websockets.ConnectionClosed(None, None)

    good = GoodWS()
    closed = ClosedWS()
    server._ws_clients = {good, closed}
    asyncio.run(server._async_broadcast("hello"))
    assert good.messages == ["hello"]
    assert closed not in server._ws_clients


def test_broadcast_reload_invokes_runner(monkeypatch):
    server = DevServer(Path("."))
    called = {}

    def fake_runner(coro, loop):
        called["ran"] = True
        new_loop = asyncio.new_event_loop()
        try:
            return new_loop.run_until_complete(coro)
        finally:
            new_loop.close()

    monkeypatch.setattr("inkpress.server.asyncio.run_coroutine_threadsafe", fake_runner)
    server._broadcast_reload()
    assert called["ran"]


def test_dev_server_port_override(tmp_path):
    server = DevServer(tmp_path, http_port=5055, ws_port=None)
    assert server.http_port == 5055
    assert server.ws_port == 5056

    explicit = DevServer(tmp_path, http_port=5055, ws_port=6000)
    assert explicit.ws_port == 6000
    assert f":{explicit.ws_port}" in explicit._reload_script


def test_dev_server_reads_ports_and_baseurl_from_config(tmp_path):
    (tmp_path / "inkpress.yaml").write_text(
        "port: 8000\nws_port: 9000\nbaseurl: /blog/\n", encoding="utf-8"
    )
    server = DevServer(tmp_path)
    assert server.http_port == 8000
    assert server.ws_port == 9000
    assert server.baseurl == "/blog"
    assert server.handler_class().baseurl == "/blog"

    overridden = DevServer(tmp_path, base_url="/notes")
    assert overridden.baseurl == "/notes"


def test_rebuild_builds_into_staging_then_reloads(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    server._post_build_delay = 0.01
    server._compute_signature = lambda: ("sig",)
    calls = []

    def fake_build(root, **kwargs):
        calls.append(("build", kwargs))
        (kwargs["output_dir_override"] / "index.html").write_text("new", encoding="utf-8")

    monkeypatch.setattr("inkpress.server.build_site", fake_build)
    monkeypatch.setattr(
        "inkpress.server.DevServer._broadcast_reload",
        lambda self=server: calls.append("reload"),
    )
    slept = []
    monkeypatch.setattr("inkpress.server.time.sleep", lambda secs: slept.append(secs))

    assert server.rebuild(include_drafts=False) is True
    assert calls[0][0] == "build"
    kwargs = calls[0][1]
    assert kwargs["output_dir_override"] == server._staging_dir
    assert kwargs["clean_output"] is True
    assert kwargs["site_url"] == "http://localhost:4000"
    assert calls[1] == "reload"
    assert slept == [0.01]
    assert server.output_dir.joinpath("index.html").read_text(encoding="utf-8") == "new"
    assert not server._staging_dir.exists()


def test_rebuild_replaces_existing_output(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    server._post_build_delay = 0
    server._broadcast_reload = lambda: None
    server._compute_signature = lambda: ("sig",)
    server.output_dir.mkdir()
    (server.output_dir / "stale.html").write_text("old", encoding="utf-8")

    def fake_build(root, **kwargs):
        (kwargs["output_dir_override"] / "index.html").write_text("new", encoding="utf-8")

    monkeypatch.setattr("inkpress.server.build_site", fake_build)
    server.rebuild(include_drafts=False)
    assert (server.output_dir / "index.html").exists()
    assert not (server.output_dir / "stale.html").exists()


def test_failed_rebuild_keeps_last_output(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    server._compute_signature = lambda: ("sig",)
    server.output_dir.mkdir()
    (server.output_dir / "index.html").write_text("good", encoding="utf-8")
    reloads = []
    server._broadcast_reload = lambda: reloads.append(True)

    def failing_build(root, **kwargs):
        raise LayoutNotFoundError(tmp_path / "site" / "index.md", "missing", [])

    monkeypatch.setattr("inkpress.server.build_site", failing_build)
    assert server.rebuild(include_drafts=False) is False
    assert reloads == []
    assert (server.output_dir / "index.html").read_text(encoding="utf-8") == "good"
    assert not server._staging_dir.exists()
    # Same sources again: no retry until something changes
    assert server._last_signature == ("sig",)


def test_rebuild_guard(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    calls = []

    def fake_build(*args, **kwargs):
        calls.append("built")

    monkeypatch.setattr("inkpress.server.build_site", fake_build)
    server._broadcast_reload = lambda: calls.append("reloaded")
    server._post_build_delay = 0
    server._debounce_seconds = 0.0

    sigs = [("a",), ("a",), ("b",)]

    def fake_sig():
        return sigs.pop(0) if sigs else ("b",)

    server._compute_signature = fake_sig
    server.rebuild(include_drafts=False)
    server._rebuilding = True
    server.rebuild(include_drafts=False)  # skipped while rebuilding
    server._rebuilding = False
    server.rebuild(include_drafts=False)  # same signature
    server.rebuild(include_drafts=False)  # signature changed
    assert calls == ["built", "reloaded", "built", "reloaded"]


def test_compute_signature_includes_config(tmp_path):
    server = DevServer(tmp_path)
    (tmp_path / "site" / "nested").mkdir(parents=True)
    (tmp_path / "assets").mkdir()
    (tmp_path / "site" / "index.md").write_text("hi", encoding="utf-8")
    (tmp_path / "assets" / "main.js").write_text("js", encoding="utf-8")
    (tmp_path / "inkpress.yaml").write_text("title: t", encoding="utf-8")
    broken = tmp_path / "assets" / "missing.txt"
    broken.symlink_to(tmp_path / "nope.txt")

    sig = server._compute_signature()
    names = [entry[0] for entry in sig]
    assert "inkpress.yaml" in names
    assert str(Path("site") / "index.md") in names
    assert str(Path("assets") / "missing.txt") not in names


def test_compute_signature_empty(tmp_path):
    server = DevServer(tmp_path)
    assert server._compute_signature() is None


def test_ws_start_failure(monkeypatch, tmp_path, caplog):
    server = DevServer(tmp_path, http_port=5055, ws_port=5057)

    async def fake_run():
        raise OSError("bind error")

    monkeypatch.setattr(server, "_run_ws_server", fake_run)
    server._loop = asyncio.new_event_loop()
    with caplog.at_level("ERROR", logger="inkpress.server"):
        server._start_ws()
    assert "failed to start" in caplog.text


def test_stop_and_ws_handler(tmp_path):
    server = DevServer(tmp_path)
    server._observer = None
    server.stop()

    class DummyObserver:
        def __init__(self):
            self.calls = []

        def stop(self):
            self.calls.append("stop")

        def join(self):
            self.calls.append("join")

    server._observer = DummyObserver()
    server.stop()
    assert server._observer.calls == ["stop", "join"]

    class DummyWS:
        def __init__(self):
            self.closed = False

        async def wait_closed(self):
            self.closed = True

    ws = DummyWS()
    asyncio.run(server._ws_handler(ws))
    assert ws.closed
    assert ws not in server._ws_clients


def test_start_watcher_schedules_folders_and_root(monkeypatch, tmp_path):
    (tmp_path / "site").mkdir()
    (tmp_path / "data").mkdir()
    server = DevServer(tmp_path)
    scheduled = []

    class DummyObserver:
        def schedule(self, handler, path, recursive):
            scheduled.append((path, recursive))

        def start(self):
            scheduled.append(("started", True))

    monkeypatch.setattr("inkpress.server.Observer", DummyObserver)
    server._start_watcher(include_drafts=False)
    assert (str(tmp_path / "site"), True) in scheduled
    assert (str(tmp_path / "data"), True) in scheduled
    assert (str(tmp_path / "assets"), True) not in scheduled
    assert (str(tmp_path), False) in scheduled
    assert ("started", True) in scheduled


def test_reload_handler_injects_script(tmp_path):
    (tmp_path / "index.html").write_text("<html><body>Hello</body></html>", encoding="utf-8")
    handler = _handler(tmp_path, "/index.html")
    result = _ReloadHandler.send_head(handler)
    body = handler.wfile.getvalue()
    assert result is None
    assert handler.codes == [200]
    assert b"WebSocket" in body
    assert body.index(b"WebSocket") < body.index(b"</body>")


def test_reload_handler_without_body(tmp_path):
    (tmp_path / "plain.html").write_text("<html>No body here</html>", encoding="utf-8")
    handler = _handler(tmp_path, "/plain.html")
    _ReloadHandler.send_head(handler)
    assert b"reload" in handler.wfile.getvalue()


def test_send_head_falls_back_for_other_files(tmp_path):
    (tmp_path / "style.css").write_text("body{}", encoding="utf-8")
    handler = _handler(tmp_path, "/style.css")
    result = _ReloadHandler.send_head(handler)
    assert result is not None
    result.close()


def test_send_head_serves_directory_index(tmp_path):
    posts = tmp_path / "posts"
    posts.mkdir()
    (posts / "index.html").write_text("<html><body>index</body></html>", encoding="utf-8")
    handler = _handler(tmp_path, "/posts/")
    assert _ReloadHandler.send_head(handler) is None
    assert handler.codes == [200]
    assert b"index" in handler.wfile.getvalue()


def test_send_head_redirects_directory_without_slash(tmp_path):
    (tmp_path / "posts").mkdir()
    (tmp_path / "posts" / "index.html").write_text("x", encoding="utf-8")
    handler = _handler(tmp_path, "/posts")
    _ReloadHandler.send_head(handler)
    assert handler.codes == [302]
    assert ("Location", "/posts/") in handler.sent_headers


def test_directory_without_index_returns_404(tmp_path):
    (tmp_path / "posts").mkdir()
    (tmp_path / "posts" / "note.txt").write_text("hi", encoding="utf-8")
    handler = _handler(tmp_path, "/posts/")
    assert _ReloadHandler.send_head(handler) is None
    assert handler.codes == [("error", 404)]


def test_send_head_missing_file_triggers_404(tmp_path):
    handler = _handler(tmp_path, "/missing.html")
    assert _ReloadHandler.send_head(handler) is None
    assert handler.codes == [("error", 404)]


def test_serve_404_uses_custom_page(tmp_path):
    (tmp_path / "404.html").write_text("<html><body>oops</body></html>", encoding="utf-8")
    handler = _handler(tmp_path, "/missing")
    assert _ReloadHandler._serve_404(handler) is None
    assert handler.codes == [404]
    body = handler.wfile.getvalue().decode()
    assert "oops" in body
    assert "reload" in body


def test_send_head_serves_under_baseurl(tmp_path):
    (tmp_path / "about").mkdir()
    (tmp_path / "about" / "index.html").write_text("<body>about</body>", encoding="utf-8")

    handler = _handler(tmp_path, "/blog/about/", baseurl="/blog")
    _ReloadHandler.send_head(handler)
    assert handler.codes == [200]
    assert b"about" in handler.wfile.getvalue()

    outside = _handler(tmp_path, "/about/", baseurl="/blog")
    _ReloadHandler.send_head(outside)
    assert outside.codes == [("error", 404)]


def test_send_head_redirects_root_to_baseurl(tmp_path):
    handler = _handler(tmp_path, "/", baseurl="/blog")
    _ReloadHandler.send_head(handler)
    assert handler.codes == [302]
    assert ("Location", "/blog/") in handler.sent_headers


def test_prepare_staging_dir_removes_existing(tmp_path):
    server = DevServer(tmp_path)
    staging = server._staging_dir
    staging.mkdir(parents=True)
    (staging / "old_file.html").write_text("old content", encoding="utf-8")

    result = server._prepare_staging_dir()

    assert result == staging
    assert staging.exists()
    assert not (staging / "old_file.html").exists()


def test_server_refuses_output_dir_over_sources(tmp_path):
    (tmp_path / "inkpress.yaml").write_text("output_dir: .\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="overwrite project sources"):
        DevServer(tmp_path)
