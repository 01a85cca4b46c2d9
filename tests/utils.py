#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import io
import json
import queue
import time
import zipfile
from collections import defaultdict
from concurrent.futures import Future
from typing import Any, Callable, DefaultDict, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from websocket import WebSocketConnectionClosedException, WebSocketTimeoutException

from lambda_profiler.exceptions import InspectorNotConnected
from lambda_profiler.profiling import ADD_HEAP_SNAPSHOT_CHUNK, REPORT_HEAP_SNAPSHOT_PROGRESS

EventHandler = Callable[[Dict[str, Any]], None]


class FakeInspector:
    """
    In-memory stand-in for InspectorSession. Commands complete synchronously unless listed in `deferred`,
    in which case they complete when resolve() is called. A heap snapshot emits the final progress event,
    then `heap_chunks`, then completes, like V8 does.
    """

    def __init__(
        self,
        profile: Optional[Dict[str, Any]] = None,
        heap_chunks: Sequence[str] = ("a", "b"),
        errors: Optional[Dict[str, Exception]] = None,
        deferred: Iterable[str] = (),
        fail_connect: bool = False,
        fail_disconnect: bool = False,
    ):
        self.profile = profile if profile is not None else {"nodes": []}
        self.heap_chunks = list(heap_chunks)
        self.errors = errors or {}
        self.deferred = set(deferred)
        self.fail_connect = fail_connect
        self.fail_disconnect = fail_disconnect
        self.connected = False
        self.connect_count = 0
        self.disconnect_count = 0
        self.posted: List[Tuple[str, Optional[Dict[str, Any]]]] = []
        self._handlers: DefaultDict[str, List[EventHandler]] = defaultdict(list)
        self._waiting: Dict[str, "Future[Dict[str, Any]]"] = {}

    @property
    def posted_methods(self) -> List[str]:
        return [method for method, _ in self.posted]

    def connect(self) -> None:
        if self.fail_connect:
            raise ConnectionRefusedError("connection refused")
        assert not self.connected, "connect() while connected"
        self.connected = True
        self.connect_count += 1

    def disconnect(self) -> None:
        self.disconnect_count += 1
        if self.fail_disconnect:
            raise OSError("socket is already closed")
        self.connected = False

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event].append(handler)

    def remove_listener(self, event: str, handler: EventHandler) -> None:
        self._handlers[event].remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._handlers[event])

    def emit(self, event: str, params: Dict[str, Any]) -> None:
        for handler in list(self._handlers[event]):
            handler(params)

    def post(self, method: str, params: Optional[Dict[str, Any]] = None) -> "Future[Dict[str, Any]]":
        future: "Future[Dict[str, Any]]" = Future()
        if not self.connected:
            future.set_exception(InspectorNotConnected(f"Cannot post {method}"))
        elif method in self.deferred:
            self._waiting[method] = future
        else:
            self._complete(method, future)
        # recorded last, so a deferred command can be resolved as soon as it shows up here
        self.posted.append((method, params))
        return future

    def resolve(self, method: str) -> None:
        self._complete(method, self._waiting.pop(method))

    def _complete(self, method: str, future: "Future[Dict[str, Any]]") -> None:
        if method in self.errors:
            future.set_exception(self.errors[method])
            return
        result: Dict[str, Any] = {}
        if method == "Profiler.stop":
            result = {"profile": self.profile}
        elif method == "HeapProfiler.takeHeapSnapshot":
            total = 1000
            self.emit(REPORT_HEAP_SNAPSHOT_PROGRESS, {"done": total, "total": total, "finished": True})
            for chunk in self.heap_chunks:
                self.emit(ADD_HEAP_SNAPSHOT_CHUNK, {"chunk": chunk})
        future.set_result(result)


class FakeWebSocket:
    """
    Stand-in for websocket-client's WebSocket. `responder` maps every sent message to the messages the
    other side answers with.
    """

    def __init__(self, responder: Callable[[Dict[str, Any]], List[Dict[str, Any]]] = lambda message: []):
        self._responder = responder
        self.incoming: "queue.Queue[str]" = queue.Queue()
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.timeout: Optional[float] = None

    def settimeout(self, timeout: float) -> None:
        self.timeout = timeout

    def send(self, payload: str) -> None:
        if self.closed:
            raise WebSocketConnectionClosedException("socket is already closed.")
        message = json.loads(payload)
        self.sent.append(message)
        for reply in self._responder(message):
            self.push(reply)

    def push(self, message: Dict[str, Any]) -> None:
        self.incoming.put(json.dumps(message))

    def recv(self) -> str:
        if self.closed:
            raise WebSocketConnectionClosedException("socket is already closed.")
        try:
            return self.incoming.get(timeout=0.05)
        except queue.Empty:
            raise WebSocketTimeoutException("timed out") from None

    def close(self) -> None:
        self.closed = True


class RecordingHTTPClient:
    def __init__(self, responses: Optional[List[Union[str, Exception]]] = None):
        self._responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def request(
        self, method: str, url: str, body: Union[bytes, str], token: Optional[str] = None, timeout: float = 5
    ) -> str:
        self.calls.append({"method": method, "url": url, "body": body, "token": token, "timeout": timeout})
        if not self._responses:
            return ""
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def puts(self) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["method"] == "PUT"]


def read_archive(body: bytes) -> Dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(body)) as archive:
        return {name: archive.read(name) for name in archive.namelist()}


def wait_for(condition: Callable[[], bool], timeout: float = 5) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline, "condition was not met in time"
        time.sleep(0.01)
