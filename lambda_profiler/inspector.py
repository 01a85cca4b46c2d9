#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import itertools
import json
import os
import signal
from collections import defaultdict
from concurrent.futures import Future
from threading import Event, Lock, Thread
from typing import Any, Callable, DefaultDict, Dict, List, Optional, cast

import psutil
import requests
from retry.api import retry_call
from websocket import WebSocketConnectionClosedException, WebSocketTimeoutException, create_connection
from websocket._core import WebSocket

from lambda_profiler.config import DEFAULT_INSPECTOR_HOST, DEFAULT_INSPECTOR_PORT
from lambda_profiler.exceptions import InspectorDebuggerUrlNotFound, InspectorError, InspectorNotConnected
from lambda_profiler.log import get_logger_adapter

logger = get_logger_adapter(__name__)

EventHandler = Callable[[Dict[str, Any]], None]

CONNECT_TIMEOUT = 15.0
# how often the reader thread wakes up to check whether it was asked to stop
RECV_POLL_INTERVAL = 1.0
# after SIGUSR1 node takes a moment to open its inspector
DEBUGGER_URL_TRIES = 5
DEBUGGER_URL_RETRY_DELAY = 1


def start_debugger(pid: int) -> None:
    """
    Makes node open its inspector on the default port. Raises psutil.NoSuchProcess if pid is gone.
    """
    psutil.Process(pid)  # validate
    # for windows: in shell node -e "process._debugProcess(PID)"
    os.kill(pid, signal.SIGUSR1)


def _fetch_debugger_url(host: str, port: int) -> str:
    debugger_url_response = requests.get(f"http://{host}:{port}/json/list", timeout=3)
    if debugger_url_response.status_code != 200 or "application/json" not in debugger_url_response.headers.get(
        "Content-Type", ""
    ):
        raise InspectorDebuggerUrlNotFound(
            {"status_code": debugger_url_response.status_code, "text": debugger_url_response.text}
        )

    response_json = debugger_url_response.json()
    if (
        not isinstance(response_json, list)
        or len(response_json) == 0
        or not isinstance(response_json[0], dict)
        or "webSocketDebuggerUrl" not in response_json[0]
    ):
        raise InspectorDebuggerUrlNotFound(response_json)

    return cast(str, response_json[0]["webSocketDebuggerUrl"])


def get_debugger_url(
    host: str = DEFAULT_INSPECTOR_HOST, port: int = DEFAULT_INSPECTOR_PORT, tries: int = DEBUGGER_URL_TRIES
) -> str:
    return cast(
        str,
        retry_call(
            _fetch_debugger_url,
            fargs=[host, port],
            exceptions=(InspectorDebuggerUrlNotFound, requests.exceptions.ConnectionError),
            tries=tries,
            delay=DEBUGGER_URL_RETRY_DELAY,
        ),
    )



class InspectorSession:
    """
    A DevTools protocol session to a V8 inspector over a websocket.

    Commands are sent with post() and answered through futures; events are delivered to handlers
    registered with on(). Both are completed from a reader thread owned by the session, so handlers
    must not block.
    """

    def __init__(
        self,
        host: str = DEFAULT_INSPECTOR_HOST,
        port: int = DEFAULT_INSPECTOR_PORT,
        debugger_url: Optional[str] = None,
        debugger_url_tries: int = DEBUGGER_URL_TRIES,
    ):
        self._host = host
        self._port = port
        self._debugger_url = debugger_url
        self._debugger_url_tries = debugger_url_tries
        self._sock: Optional[WebSocket] = None
        self._reader: Optional[Thread] = None
        self._stop_event = Event()
        # guards _pending, _handlers and sends on _sock; the reader thread shares them
        self._lock = Lock()
        self._ids = itertools.count(1)
        self._pending: Dict[int, "Future[Dict[str, Any]]"] = {}
        self._methods: Dict[int, str] = {}
        self._handlers: DefaultDict[str, List[EventHandler]] = defaultdict(list)

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> None:
        if self._sock is not None:
            raise RuntimeError("Inspector session is already connected")
        debugger_url = self._debugger_url or get_debugger_url(self._host, self._port, self._debugger_url_tries)
        sock = create_connection(url=debugger_url, timeout=CONNECT_TIMEOUT)
        sock.settimeout(RECV_POLL_INTERVAL)
        # a fresh event per connection, so a slow-exiting reader of a previous connection can't touch this one
        self._stop_event = Event()
        self._sock = sock
        self._reader = Thread(
            target=self._read_loop, args=(sock, self._stop_event), name="inspector-reader", daemon=True
        )
        self._reader.start()
        logger.debug(f"Connected to inspector at {debugger_url}")

    def disconnect(self) -> None:
        sock, reader = self._sock, self._reader
        if sock is None:
            return
        self._sock = None
        self._reader = None
        self._stop_event.set()
        try:
            sock.close()
        finally:
            if reader is not None:
                reader.join(RECV_POLL_INTERVAL * 2)
            self._fail_pending(InspectorNotConnected("Inspector session was disconnected"))

    def post(self, method: str, params: Optional[Dict[str, Any]] = None) -> "Future[Dict[str, Any]]":
        """
        Sends a command. Never raises: failures (including sending on a closed session) are set on the future.
        """
        future: "Future[Dict[str, Any]]" = Future()
        message: Dict[str, Any] = {"method": method}
        if params is not None:
            message["params"] = params
        with self._lock:
            if self._sock is None:
                future.set_exception(InspectorNotConnected(f"Cannot post {method}, inspector is not connected"))
                return future
            message_id = next(self._ids)
            message["id"] = message_id
            self._pending[message_id] = future
            self._methods[message_id] = method
            try:
                self._sock.send(json.dumps(message))
            except Exception as e:
                del self._pending[message_id]
                del self._methods[message_id]
                future.set_exception(e)
        return future

    def on(self, event: str, handler: EventHandler) -> None:
        with self._lock:
            self._handlers[event].append(handler)

    def remove_listener(self, event: str, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._handlers.get(event, []):
                self._handlers[event].remove(handler)

    def _read_loop(self, sock: WebSocket, stop_event: Event) -> None:
        while not stop_event.is_set():
            try:
                raw = sock.recv()
            except WebSocketTimeoutException:
                continue
            except (WebSocketConnectionClosedException, OSError) as e:
                if stop_event.is_set():
                    return
                logger.debug(f"Inspector connection closed: {e}")
                break
            if not raw:
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Unexpected message from inspector: {raw[:200]!r}")
                continue
            self._dispatch(message)
        if not stop_event.is_set():
            # closed by the other side; disconnect() fails pending requests otherwise
            self._fail_pending(InspectorNotConnected("Inspector connection was closed"))

    def _dispatch(self, message: Dict[str, Any]) -> None:
        if "id" in message:
            with self._lock:
                future = self._pending.pop(message["id"], None)
                method = self._methods.pop(message["id"], "(unknown)")
            if future is None:
                return
            if "error" in message:
                future.set_exception(InspectorError(method, message["error"]))
            else:
                future.set_result(message.get("result", {}))
        elif "method" in message:
            with self._lock:
                handlers = list(self._handlers.get(message["method"], []))
            for handler in handlers:
                try:
                    handler(message.get("params", {}))
                except Exception:
                    logger.exception(f"Error handling inspector event {message['method']}")

    def _fail_pending(self, exception: Exception) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            self._methods.clear()
        for future in pending:
            if not future.done():
                future.set_exception(exception)
