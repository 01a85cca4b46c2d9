#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
from typing import List

from lambda_profiler.client import HTTPClient
from lambda_profiler.config import DEFAULT_UPLOAD_TIMEOUT
from lambda_profiler.log import get_logger_adapter

logger = get_logger_adapter(__name__)


class ArchiveBuffer:
    # A list of chunks, joined once; growing one bytes object per chunk would copy it every time.
    def __init__(self) -> None:
        self._chunks: List[bytes] = []
        self._consumed = False
        self.size = 0

    def append(self, chunk: bytes) -> None:
        assert not self._consumed, "archive buffer was already consumed"
        self._chunks.append(chunk)
        self.size += len(chunk)

    def getvalue(self) -> bytes:
        assert not self._consumed, "archive buffer can only be consumed once"
        self._consumed = True
        body = b"".join(self._chunks)
        self._chunks = []
        return body


class ArchiveUploader:
    """
    Buffers the whole archive, then uploads it with a single PUT.
    Pre-signed upload URLs don't accept chunked transfer encoding, so the body size has to be known upfront.
    """

    def __init__(self, signed_url: str, http_client: HTTPClient, timeout: float = DEFAULT_UPLOAD_TIMEOUT):
        self._signed_url = signed_url
        self._client = http_client
        self._timeout = timeout
        self._buffer = ArchiveBuffer()
        self.uploaded = False

    def add_chunk(self, chunk: bytes) -> None:
        self._buffer.append(chunk)

    def upload(self) -> None:
        assert not self.uploaded, "archive was already uploaded"
        body = self._buffer.getvalue()
        logger.debug(f"Uploading archive ({len(body)} bytes)")
        # no token: the signature in the url is the authorization
        self._client.request("PUT", self._signed_url, body, timeout=self._timeout)
        self.uploaded = True
        logger.debug("Archive uploaded")
