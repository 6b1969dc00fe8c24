"""
Ingestion server - accepts any HTTP call, persists it and notifies the UI
"""
import os
import socket
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional

from flask import Flask, Response, request
from werkzeug.serving import BaseWSGIServer, WSGIRequestHandler, make_server

from .feed import LiveFeed
from .log import Logger, get_logger
from .models import WebhookRecord, parse_body_json
from .store import RecordStore, StorageError


class IdCounter:
    """Thread-safe monotonic id source."""

    def __init__(self, first_id: int = 1):
        self._next = first_id
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
        return value

    def skip_past(self, used_id: int):
        """Never hand out used_id or anything below it again."""
        with self._lock:
            self._next = max(self._next, used_id + 1)


def collect_headers(headers) -> Dict[str, str]:
    """Flatten request headers; repeated names are joined with ', '."""
    collected: Dict[str, str] = {}
    for name, value in headers.items():
        if name in collected:
            collected[name] = f"{collected[name]}, {value}"
        else:
            collected[name] = value
    return collected


class RequestHandler(WSGIRequestHandler):
    """Routes werkzeug's own messages to the log file instead of stderr."""

    def log(self, type: str, message: str, *args) -> None:
        logger = getattr(self.server, 'webhook_logger', None)
        if logger is not None and type == 'error':
            logger.error(f"{self.address_string()} {message % args}")


def create_app(store: RecordStore, feed: LiveFeed, counter: IdCounter, logger: Logger) -> Flask:
    """Build the catch-all webhook receiver.

    Capture runs as a before_request hook, ahead of URL routing, so every
    method on every path is answered, including ones no route declares
    (TRACE, PROPFIND, PURGE, ...).
    """
    app = Flask(__name__, static_folder=None)

    @app.before_request
    def receive():
        body = request.get_data(as_text=True)
        record = WebhookRecord(
            id=counter.next(),
            timestamp=datetime.now().astimezone(),
            method=request.method,
            path=request.path,
            headers=collect_headers(request.headers),
            body=body,
            body_json=parse_body_json(body),
        )
        logger.write(f"http {record.method} {record.path} id={record.id} bytes={len(body)}")

        try:
            stored_id = store.insert(record)
        except StorageError as e:
            logger.error(str(e))
        else:
            if stored_id != record.id:
                counter.skip_past(stored_id)
                record = replace(record, id=stored_id)

        if not feed.publish(record):
            logger.write(f"live feed full, webhook #{record.id} only persisted")

        return Response("OK", status=200, mimetype="text/plain")

    return app


class IngestionServer:
    """Werkzeug server running the webhook app on a daemon thread."""

    def __init__(
        self,
        store: RecordStore,
        feed: LiveFeed,
        port: int,
        host: str = "0.0.0.0",
        first_id: Optional[int] = None,
        logger: Optional[Logger] = None,
    ):
        """first_id defaults to one past the highest stored id."""
        self.store = store
        self.feed = feed
        self.port = port
        self.host = host
        self.logger = logger or get_logger('server')
        if first_id is None:
            first_id = store.last_id() + 1
        self.counter = IdCounter(first_id)
        self.app = create_app(store, feed, self.counter, self.logger)
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._server is not None

    def start(self):
        """Bind the port and start serving. Raises OSError if the bind fails."""
        if self._server is not None:
            return
        # Bind here: werkzeug exits the process when it fails to bind by itself.
        sock = socket.socket(socket.AF_INET6 if ':' in self.host else socket.AF_INET, socket.SOCK_STREAM)
        try:
            if os.name == 'posix':
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.listen(128)
            self._server = make_server(
                self.host, self.port, self.app, threaded=True, request_handler=RequestHandler, fd=sock.fileno(),
            )
        finally:
            sock.close()
        self._server.webhook_logger = self.logger
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name=f"webhook-server-{self.port}",
            daemon=True,
        )
        self._thread.start()
        self.logger.write(f"listening on {self.host}:{self.port}")

    def stop(self):
        """Stop accepting requests. In-flight responses are not awaited."""
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        self.logger.write("server stopped")
