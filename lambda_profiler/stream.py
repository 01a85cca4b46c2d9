#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import queue
from typing import Iterator, Optional, Union

from lambda_profiler.config import DEFAULT_SNAPSHOT_TIMEOUT
from lambda_profiler.exceptions import SnapshotStreamError, SnapshotStreamTimeout


class _EndOfStream:
    def __init__(self, error: Optional[BaseException]):
        self.error = error


class HeapSnapshotStream:
    """
    A byte stream fed by a producer (the inspector's chunk events) and drained by a single consumer.

    The buffer is unbounded; the producer never blocks. The stream ends when the producer calls close(),
    which may carry the error that ended it. Iterating yields chunks in write order, and raises
    SnapshotStreamTimeout if no chunk (or close) arrives within `timeout` seconds.
    """

    def __init__(self, timeout: float = DEFAULT_SNAPSHOT_TIMEOUT):
        self._timeout = timeout
        self._queue: "queue.Queue[Union[bytes, _EndOfStream]]" = queue.Queue()
        self._closed = False
        self.bytes_written = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, chunk: Union[bytes, str]) -> None:
        if self._closed:
            raise SnapshotStreamError("write to a closed heap snapshot stream")
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self.bytes_written += len(chunk)
        self._queue.put(chunk)

    def close(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(_EndOfStream(error))

    def __iter__(self) -> Iterator[bytes]:
        while True:
            try:
                item = self._queue.get(timeout=self._timeout)
            except queue.Empty:
                raise SnapshotStreamTimeout(self._timeout) from None
            if isinstance(item, _EndOfStream):
                if item.error is not None:
                    raise SnapshotStreamError(f"heap snapshot failed: {item.error}") from item.error
                return
            yield item
