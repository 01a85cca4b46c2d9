#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
from typing import Iterator
from unittest.mock import Mock

from pytest import MonkeyPatch, fixture

from lambda_profiler.config import ENABLE_HEAPSNAPSHOT_ENV, ENABLE_PROFILER_ENV
from lambda_profiler.profiler_types import InvocationContext, SigningResult
from lambda_profiler.profiling import ProfilingSession
from lambda_profiler.signer import SigningClient
from tests.utils import FakeInspector, RecordingHTTPClient


@fixture(autouse=True)
def clean_environment(monkeypatch: MonkeyPatch) -> Iterator[None]:
    """
    The capture flags can be overridden from the environment; tests control them through config only.
    """
    for name in (ENABLE_PROFILER_ENV, ENABLE_HEAPSNAPSHOT_ENV, "AWS_REGION"):
        monkeypatch.delenv(name, raising=False)
    yield


@fixture
def invocation() -> InvocationContext:
    return InvocationContext(
        function_arn="arn:aws:lambda:us-east-1:123456789012:function:profiled",
        request_id="req-1",
        start_timestamp=1_600_000_000_000,
    )


@fixture
def fake_inspector() -> FakeInspector:
    return FakeInspector()


@fixture
def profiling_session(fake_inspector: FakeInspector) -> ProfilingSession:
    return ProfilingSession(fake_inspector, command_timeout=1, snapshot_timeout=1)


@fixture
def signing_client() -> Mock:
    client = Mock(spec=SigningClient)
    client.request_signed_url.return_value = SigningResult(signed_upload_url="https://x/y", access_credential="tok1")
    return client


@fixture
def http_client() -> RecordingHTTPClient:
    return RecordingHTTPClient()
