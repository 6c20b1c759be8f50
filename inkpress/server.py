"""Development server for inkpress.

Serves the built site with live reload for local writing:
- Serves the site under its configured base path, as it will be published.
- Injects a reload script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Watches source folders, rebuilds into a staging directory and reloads clients.
  A failed rebuild is logged and the last good build keeps being served.

Key classes:
- DevServer: Main class for running the development server.
- _ReloadHandler: HTTP request handler that injects reload script and enforces 404s.
- _ChangeHandler: File system event handler for triggering rebuilds.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import os
import shutil
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import urlsplit

import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import build_site, load_build_config, resolve_output_dir
from .config import CONFIG_FILENAME
from .errors import BuildError, ConfigError

logger = logging.getLogger(__name__)

WATCHED_FOLDERS = ("site", "assets", "data")


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects live reload script into HTML pages.

    Attributes:
        reload_script: JavaScript code for WebSocket connection to trigger reloads.
        baseurl: Base path the site is mounted under ("" for the root).
    """

    reload_script_template = """
    <script>
    (() => {{
      const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
      ws.onmessage = (event) => {{
        const data = JSON.parse(event.data || '{{}}');
        if (data.type === 'reload') location.reload();
      }};
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=4001)
    baseurl = ""

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, status: int, content: str) -> None:
        encoded = self._inject(content)
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with injected reload script and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, error_page.read_text(encoding="utf-8"))
            return None
        self.send_error(404, "File not found")
        return None

    def _redirect(self, location: str):
        self.send_response(302)
        self.send_header("Location", location)
        self.send_header("Content-Length", "0")
        self.end_headers()
        return None

    def _strip_baseurl(self, url_path: str) -> str | None:
        """Map a request path onto the output directory, or None if outside the base path."""
        if not self.baseurl:
            return url_path
        if url_path == self.baseurl or url_path.startswith(f"{self.baseurl}/"):
            return url_path[len(self.baseurl) :] or "/"
        return None

    def send_head(self):
        url_path = urlsplit(self.path).path
        if self.baseurl and url_path == "/":
            return self._redirect(f"{self.baseurl}/")
        site_path = self._strip_baseurl(url_path)
        if site_path is None:
            return self._serve_404()
        path_obj = Path(self.translate_path(site_path))
        if path_obj.is_dir():
            if not site_path.endswith("/"):
                return self._redirect(f"{url_path}/")
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            return self._serve_404()

        if path_obj.suffix == ".html":
            self._send_html(200, path_obj.read_text(encoding="utf-8"))
            return None
        self.path = site_path
        return super().send_head()


class DevServer:
    """Development server with live reload functionality.

    Attributes:
        project_root: Root directory of the project.
        config: Site configuration.
        output_dir: Directory where built site is served.
        ws_port: Port for WebSocket connections.
        http_port: Port for HTTP server.
        _observer: File system observer for changes.
        _ws_clients: Set of connected WebSocket clients.
        _loop: Event loop for WebSocket handling.
    """

    def __init__(
        self,
        project_root: Path,
        http_port: int | None = None,
        ws_port: int | None = None,
        base_url: str | None = None,
    ):
        """Initialize the development server.

        Args:
            project_root: Root directory of the project.
            http_port: Optional override for HTTP port.
            ws_port: Optional override for the live reload port.
            base_url: Optional override for the site base path.
        """
        self.project_root = project_root
        self.base_url = base_url
        self.config = load_build_config(project_root, base_url)
        self.output_dir = resolve_output_dir(project_root, self.config)
        self._staging_dir = self.output_dir.with_suffix(self.output_dir.suffix + ".staging")
        base_http = int(http_port or self.config.get("port", 4000))
        if ws_port is not None:
            resolved_ws = ws_port
        elif http_port is not None:
            resolved_ws = base_http + 1
        else:
            resolved_ws = int(self.config.get("ws_port") or base_http + 1)
        self.ws_port = resolved_ws
        self.http_port = base_http
        self._reload_script = _ReloadHandler.reload_script_template.format(ws_port=self.ws_port)
        # Absolute URLs point at the local server while serving.
        self._site_url = f"http://localhost:{self.http_port}"
        self._observer: Observer | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._rebuilding = False
        self._last_rebuild_at = 0.0
        self._last_signature: tuple | None = None
        self._debounce_seconds = 0.05
        self._post_build_delay = 0.05

    @property
    def baseurl(self) -> str:
        return self.config.get("baseurl", "")

    def start(
        self, include_drafts: bool = False
    ) -> None:  # pragma: no cover - integration path
        self._build(include_drafts)
        self._last_signature = self._compute_signature()
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        self._start_watcher(include_drafts)
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _build(self, include_drafts: bool) -> None:
        """Build into the staging directory and swap it in on success."""
        staging = self._prepare_staging_dir()
        try:
            build_site(
                self.project_root,
                include_drafts=include_drafts,
                base_url=self.base_url,
                site_url=self._site_url,
                clean_output=True,
                output_dir_override=staging,
            )
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        self._activate_staging(staging)

    def handler_class(self) -> type[_ReloadHandler]:
        return type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script, "baseurl": self.baseurl},
        )

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler = functools.partial(self.handler_class(), directory=str(self.output_dir))
        httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info(
            "Serving %s at http://localhost:%d%s/",
            self.output_dir,
            self.http_port,
            self.baseurl,
        )
        httpd.serve_forever()

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            logger.error("WebSocket server failed to start (port %d): %s", self.ws_port, exc)
            return

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast_reload(self):
        message = json.dumps({"type": "reload"})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in self._ws_clients:
            try:
                await ws.send(message)
            except websockets.ConnectionClosed:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)

    def _start_watcher(self, include_drafts: bool) -> None:
        handler = _ChangeHandler(self, include_drafts)
        observer = Observer()
        for folder in WATCHED_FOLDERS:
            watch_path = self.project_root / folder
            if watch_path.exists():
                observer.schedule(handler, str(watch_path), recursive=True)
        # inkpress.yaml lives at the root
        observer.schedule(handler, str(self.project_root), recursive=False)
        observer.start()
        self._observer = observer

    def rebuild(self, include_drafts: bool) -> bool:
        """Rebuild after a change. Returns True when clients were told to reload."""
        now = time.time()
        if self._rebuilding or (now - self._last_rebuild_at) < self._debounce_seconds:
            return False
        signature = self._compute_signature()
        if signature is not None and signature == self._last_signature:
            return False
        self._rebuilding = True
        try:
            logger.info("Change detected; rebuilding...")
            try:
                self._build(include_drafts)
            except BuildError as exc:
                logger.error("Build failed: %s", exc)
                self._last_signature = signature
                return False
            except ConfigError as exc:
                logger.error("Invalid configuration: %s", exc)
                self._last_signature = signature
                return False
            self._last_signature = signature
            if self._post_build_delay:
                time.sleep(self._post_build_delay)
            self._broadcast_reload()
            return True
        finally:
            self._rebuilding = False
            self._last_rebuild_at = time.time()

    def _compute_signature(self) -> tuple | None:
        entries: list[tuple] = []
        paths = [self.project_root / CONFIG_FILENAME]
        for folder in WATCHED_FOLDERS:
            root = self.project_root / folder
            if root.exists():
                paths.extend(sorted(root.rglob("*")))
        for path in paths:
            if path.is_dir():
                continue
            try:
                stat = path.stat()
            except OSError:
                continue
            rel = path.relative_to(self.project_root)
            entries.append((str(rel), stat.st_mtime_ns, stat.st_size))
        return tuple(entries) if entries else None

    def _prepare_staging_dir(self) -> Path:
        staging = self._staging_dir
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True, exist_ok=True)
        return staging

    def _activate_staging(self, staging: Path) -> None:
        target = self.output_dir
        if target.exists():
            shutil.rmtree(target)
        os.replace(staging, target)


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, server: DevServer, include_drafts: bool):
        super().__init__()
        self.server = server
        self.include_drafts = include_drafts

    def on_any_event(self, event):
        if event.is_directory:
            return
        path = Path(event.src_path)
        for ignored in (self.server.output_dir, self.server._staging_dir):
            try:
                path.relative_to(ignored)
                return
            except ValueError:
                pass
        self.server.rebuild(self.include_drafts)
