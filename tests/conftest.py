import threading
import time
from collections import defaultdict
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest


class Site:
    """Route table for the local test server, with per-path request log."""

    def __init__(self):
        self.routes = {}
        self.hits = defaultdict(int)
        self.log = []  # (path, monotonic time)
        self.lock = threading.Lock()
        self.base_url = ""
        self.last_user_agent = None

    def add(self, path, body=b"", status=200, content_type="text/html", headers=None, delay=0.0):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[path] = (status, content_type, body, headers or {}, delay)

    def add_sequence(self, path, responses, content_type="text/html"):
        """Serve (status, body) pairs in order, repeating the last one."""
        self.routes[path] = [
            (status, content_type, body.encode("utf-8") if isinstance(body, str) else body, {}, 0.0)
            for status, body in responses
        ]

    def redirect(self, path, location, status=302):
        self.routes[path] = (status, "text/plain", b"", {"Location": location}, 0.0)

    def url(self, path):
        return self.base_url + path

    def total_hits(self):
        with self.lock:
            return sum(self.hits.values())


def _handler_for(site):
    class Handler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"

        def do_GET(self):
            path = self.path.split("?", 1)[0]
            with site.lock:
                site.hits[path] += 1
                site.log.append((path, time.monotonic()))
                site.last_user_agent = self.headers.get("User-Agent")
                route = site.routes.get(path)
                if isinstance(route, list):
                    route = route.pop(0) if len(route) > 1 else route[0]
            if route is None:
                status, ctype, body, headers, delay = 404, "text/plain", b"not found", {}, 0.0
            else:
                status, ctype, body, headers, delay = route
            if delay:
                time.sleep(delay)
            self.send_response(status)
            self.send_header("Content-Type", ctype)
            self.send_header("Content-Length", str(len(body)))
            for k, v in headers.items():
                self.send_header(k, v)
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass

    return Handler


@pytest.fixture
def site():
    s = Site()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _handler_for(s))
    server.daemon_threads = True
    s.base_url = f"http://127.0.0.1:{server.server_address[1]}"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield s
    server.shutdown()
    server.server_close()
