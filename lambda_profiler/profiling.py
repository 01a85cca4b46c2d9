#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import enum
from concurrent.futures import Future
from typing import Any, Dict, Optional

from lambda_profiler.config import DEFAULT_COMMAND_TIMEOUT, DEFAULT_SAMPLE_RATE, DEFAULT_SNAPSHOT_TIMEOUT
from lambda_profiler.inspector import InspectorSession
from lambda_profiler.log import get_logger_adapter
from lambda_profiler.stream import HeapSnapshotStream

logger = get_logger_adapter(__name__)

ADD_HEAP_SNAPSHOT_CHUNK = "HeapProfiler.addHeapSnapshotChunk"
REPORT_HEAP_SNAPSHOT_PROGRESS = "HeapProfiler.reportHeapSnapshotProgress"


class SessionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    SAMPLING = "sampling"
    SNAPSHOT_PENDING = "snapshot-pending"
    STOPPED = "stopped"


class ProfilingSession:
    """
    Drives CPU sampling and heap snapshots over an inspector session.

    Capture is best effort: every inspector failure is logged and absorbed here, so that profiling
    can never fail the invocation being profiled.
    """

    def __init__(
        self,
        inspector: InspectorSession,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        snapshot_timeout: float = DEFAULT_SNAPSHOT_TIMEOUT,
    ):
        self._inspector = inspector
        self._command_timeout = command_timeout
        self._snapshot_timeout = snapshot_timeout
        self._state = SessionState.IDLE
        self.sampling = False
        self.snapshot_pending = False

    @property
    def state(self) -> SessionState:
        return self._state

    def connect(self) -> None:
        self.disconnect()
        try:
            self._inspector.connect()
        except Exception as e:
            logger.warning(f"Error connecting to inspector: {e}")
            self._state = SessionState.IDLE
            return
        self._state = SessionState.CONNECTED

    def disconnect(self) -> None:
        try:
            self._inspector.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting from inspector: {e}")
        if self._state != SessionState.IDLE:
            self._state = SessionState.STOPPED
        self.sampling = False
        self.snapshot_pending = False

    def start(self, cpu: bool, heap: bool, sample_interval: int = DEFAULT_SAMPLE_RATE) -> None:
        self.connect()
        if heap:
            if self._call("HeapProfiler.enable", description="enabling heap profiler") is not None:
                self.snapshot_pending = True
                self._state = SessionState.SNAPSHOT_PENDING
        if cpu:
            self._call("Profiler.enable", description="enabling profiler")
            self._call(
                "Profiler.setSamplingInterval", {"interval": sample_interval}, description="setting sampling interval"
            )
            if self._call("Profiler.start", description="starting profiler") is not None:
                self.sampling = True
                self._state = SessionState.SAMPLING

    def _call(self, method: str, params: Optional[Dict[str, Any]] = None, *, description: str) -> Optional[Dict]:
        try:
            return self._inspector.post(method, params).result(self._command_timeout)
        except Exception as e:
            logger.warning(f"Error {description}: {e}")
            return None

    def stop_sampling(self) -> "Future[Dict[str, Any]]":
        """
        Requests Profiler.stop. The returned future resolves to the CPU profile object.
        """
        logger.debug("Stopping CPU profiler")
        profile: "Future[Dict[str, Any]]" = Future()

        def on_stopped(stopped: "Future[Dict[str, Any]]") -> None:
            self.sampling = False
            error = stopped.exception()
            if error is not None:
                profile.set_exception(error)
            elif "profile" not in stopped.result():
                profile.set_exception(ValueError("Profiler.stop returned no profile"))
            else:
                profile.set_result(stopped.result()["profile"])

        self._inspector.post("Profiler.stop").add_done_callback(on_stopped)
        return profile

    def take_heap_snapshot(self) -> HeapSnapshotStream:
        """
        Triggers a heap snapshot and returns its stream at once; chunks are written to it as the inspector
        sends them. The stream is closed when the takeHeapSnapshot command completes, since V8 reports
        the final progress (finished=true) before it serializes the snapshot into chunks.
        """
        stream = HeapSnapshotStream(self._snapshot_timeout)

        def on_chunk(params: Dict[str, Any]) -> None:
            chunk = params.get("chunk")
            if chunk:
                stream.write(chunk)

        def on_progress(params: Dict[str, Any]) -> None:
            if params.get("finished"):
                logger.debug(f"Heap snapshot completed ({params.get('total')} objects), streaming chunks")

        def on_taken(taken: "Future[Dict[str, Any]]") -> None:
            self._inspector.remove_listener(ADD_HEAP_SNAPSHOT_CHUNK, on_chunk)
            self._inspector.remove_listener(REPORT_HEAP_SNAPSHOT_PROGRESS, on_progress)
            self.snapshot_pending = False
            error = taken.exception()
            if error is not None:
                logger.warning(f"Error taking heap snapshot: {error}")
            else:
                logger.debug(f"Heap snapshot stream closed after {stream.bytes_written} bytes")
            stream.close(error)

        self._inspector.on(ADD_HEAP_SNAPSHOT_CHUNK, on_chunk)
        self._inspector.on(REPORT_HEAP_SNAPSHOT_PROGRESS, on_progress)
        logger.debug("Posting takeHeapSnapshot to inspector")
        self._inspector.post("HeapProfiler.takeHeapSnapshot", {"reportProgress": True}).add_done_callback(on_taken)
        return stream
