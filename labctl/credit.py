"""
Local listener used by the credit purchase flow.

The service redirects the browser to ``http://localhost:<port>/`` once the
payment page is done, passing ``status`` (``success`` or ``cancel``) and the
new ``balance``. The CLI blocks until that callback arrives or the wait times
out, whichever comes first.
"""

import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional
from urllib.parse import parse_qs, urlparse

from labctl.logging import get_labctl_logger

LOGGER = get_labctl_logger()

DEFAULT_TIMEOUT = 120.0

WINDOW_CLOSE = b"""<html>
<body>
<script>
    window.close()
</script>
    <h4>
    You may now close this window.
    </h4>
</body>
</html>
"""


@dataclass(frozen=True)
class PaymentResult:
    """
    Outcome of the payment callback. An empty status means no callback
    arrived before the timeout.
    """

    status: str = ""
    balance: str = ""


class _CallbackHandler(BaseHTTPRequestHandler):
    server: "_CallbackServer"

    def do_GET(self) -> None:
        self._record(urlparse(self.path).query)

    def do_POST(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length).decode("utf-8", errors="replace") if length else ""
        query = urlparse(self.path).query
        self._record("&".join(part for part in (query, body) if part))

    def _record(self, raw: str) -> None:
        values = parse_qs(raw)
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(WINDOW_CLOSE)))
        self.end_headers()
        self.wfile.write(WINDOW_CLOSE)
        self.server.deliver(
            PaymentResult(
                status=(values.get("status") or [""])[0],
                balance=(values.get("balance") or [""])[0],
            )
        )

    def log_message(self, format: str, *args) -> None:
        LOGGER.debug("payment callback: " + format, *args)


class _CallbackServer(HTTPServer):
    def __init__(self, address) -> None:
        super().__init__(address, _CallbackHandler)
        self.result: Optional[PaymentResult] = None
        self.done = threading.Event()

    def deliver(self, result: PaymentResult) -> None:
        if self.done.is_set():
            return
        self.result = result
        self.done.set()


class CallbackListener:
    """
    Ephemeral HTTP listener bound to a random local port.
    """

    def __init__(self, host: str = "") -> None:
        self._server = _CallbackServer((host, 0))

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    def wait(self, timeout: float = DEFAULT_TIMEOUT) -> PaymentResult:
        """
        Serve until the first callback arrives or the timeout elapses, then
        tear the listener down.

        :return: The callback result, or an empty PaymentResult on timeout
        """
        thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        thread.start()
        try:
            if not self._server.done.wait(timeout):
                LOGGER.debug("No payment callback after %.0fs", timeout)
                return PaymentResult()
            return self._server.result or PaymentResult()
        finally:
            self._server.shutdown()
            thread.join()
            self._server.server_close()

    def close(self) -> None:
        self._server.server_close()


def open_listener() -> Optional[CallbackListener]:
    """
    Open the callback listener. Returns None when no local port can be bound;
    the purchase can still be completed in the browser.
    """
    try:
        return CallbackListener()
    except OSError as e:
        LOGGER.debug("Unable to open payment callback listener: %s", e)
        return None
