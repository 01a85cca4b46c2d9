#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import itertools
import zipfile
from typing import Callable, List

from lambda_profiler.exceptions import SnapshotStreamError
from lambda_profiler.log import get_logger_adapter
from lambda_profiler.profiler_types import ArtifactEntry, ArtifactPayload

logger = get_logger_adapter(__name__)

STREAM_COPY_LOG_INTERVAL = 64 * 1024 * 1024


class _ArchiveSink:
    """
    Write-only, unseekable file object handed to ZipFile. Every write is passed on as a data event.
    ZipFile falls back to data descriptors when the target can't tell()/seek(), so entries of unknown size
    can be streamed through.
    """

    def __init__(self, on_data: Callable[[bytes], None]):
        self._on_data = on_data

    def write(self, data: bytes) -> int:
        if data:
            self._on_data(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass


class ArchiveAssembler:
    """
    Builds a zip archive of a fixed number of entries.

    An entry counts as received when it is registered, not when its payload is consumed. Once the
    received count reaches the expected count the archive is finalized: payloads are written in
    registration order (streams are drained as their chunks arrive), the zip is closed, and on_finish
    is called exactly once. on_data gets every chunk of zip bytes as it is produced.

    The counters are only touched from the thread that registers entries; streamed payloads may be
    produced by other threads.
    """

    def __init__(
        self,
        expected_entries: int,
        on_data: Callable[[bytes], None],
        on_finish: Callable[[], None],
        compression: int = zipfile.ZIP_DEFLATED,
    ):
        assert expected_entries >= 0, "expected_entries can't be negative"
        self._expected = expected_entries
        self._received = 0
        self._entries: List[ArtifactEntry] = []
        # registered streams that failed before producing any data
        self.omitted_entries: List[str] = []
        self._on_finish = on_finish
        self._compression = compression
        self._zip = zipfile.ZipFile(_ArchiveSink(on_data), mode="w", compression=compression)
        self.finalized = False
        self.finished = False
        self._maybe_finalize()

    @property
    def expected_entries(self) -> int:
        return self._expected

    @property
    def received_entries(self) -> int:
        return self._received

    @property
    def entry_names(self) -> List[str]:
        return [entry.name for entry in self._entries if entry.name not in self.omitted_entries]

    def register_entry(self, name: str, payload: ArtifactPayload) -> None:
        if self.finalized or self._received >= self._expected:
            raise ValueError(f"Archive already has all {self._expected} expected entries, can't add {name!r}")
        self._entries.append(ArtifactEntry(name, payload))
        self._received += 1
        logger.debug(f"Archive received entry {name} [{self._received}/{self._expected}]")
        self._maybe_finalize()

    def skip_entry(self, name: str) -> None:
        """
        Gives up on an expected entry whose capture failed, so the others are still archived.
        """
        if self.finalized or self._received >= self._expected:
            raise ValueError(f"Archive isn't waiting for any more entries, can't skip {name!r}")
        self._expected -= 1
        logger.debug(f"Archive skipped entry {name} [{self._received}/{self._expected}]")
        self._maybe_finalize()

    def _maybe_finalize(self) -> None:
        if self._received == self._expected and not self.finalized:
            logger.debug("Last entry. Finalizing archive.")
            self._finalize()

    def _finalize(self) -> None:
        self.finalized = True
        for entry in self._entries:
            if isinstance(entry.payload, (bytes, str)):
                self._zip.writestr(entry.name, entry.payload, compress_type=self._compression)
            else:
                if not self._write_stream(entry):
                    self.omitted_entries.append(entry.name)
        self._zip.close()
        self.finished = True
        self._on_finish()

    def _write_stream(self, entry: ArtifactEntry) -> bool:
        """
        Copies a streamed payload into the archive. A stream that fails before its first chunk is left out
        of the archive (returns False); one that fails later keeps what was received.
        """
        chunks = iter(entry.payload)
        try:
            first_chunk = next(chunks, None)
        except SnapshotStreamError as e:
            logger.warning(f"Entry {entry.name} left out of archive, no data was received: {e}")
            return False

        written = 0
        with self._zip.open(entry.name, mode="w") as entry_file:
            try:
                for chunk in itertools.chain([first_chunk] if first_chunk is not None else [], chunks):
                    entry_file.write(chunk)
                    written += len(chunk)
                    if written // STREAM_COPY_LOG_INTERVAL != (written - len(chunk)) // STREAM_COPY_LOG_INTERVAL:
                        logger.debug(f"Compressed {written} bytes of {entry.name}")
            except SnapshotStreamError as e:
                logger.warning(f"Entry {entry.name} truncated after {written} bytes: {e}")
        logger.debug(f"Appended {entry.name} to archive ({written} bytes)")
        return True
