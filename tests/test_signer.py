#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import json

import pytest
import requests
from pytest import MonkeyPatch

from lambda_profiler.exceptions import SigningError
from lambda_profiler.profiler_types import InvocationContext
from lambda_profiler.signer import SigningClient, get_signer_hostname
from tests.utils import RecordingHTTPClient


def test_request_signed_url(invocation: InvocationContext) -> None:
    http_client = RecordingHTTPClient(['{"signedRequest": "https://x/y", "jwtAccess": "tok1"}'])
    signer = SigningClient(http_client, signer_address="https://signer.test/", timeout=2)  # type: ignore

    result = signer.request_signed_url(invocation, "client-id")

    assert result.signed_upload_url == "https://x/y"
    assert result.access_credential == "tok1"
    (call,) = http_client.calls
    assert call["method"] == "POST"
    assert call["url"] == "https://signer.test/"
    assert call["token"] == "client-id"
    assert call["timeout"] == 2
    assert json.loads(call["body"]) == {
        "arn": invocation.function_arn,
        "requestId": "req-1",
        "timestamp": 1_600_000_000_000,
        "extension": ".zip",
    }


@pytest.mark.parametrize(
    "response_text",
    [
        pytest.param("<html>gateway timeout</html>", id="not-json"),
        pytest.param('{"signedRequest": "https://x/y"}', id="missing-credential"),
        pytest.param('["https://x/y"]', id="not-an-object"),
    ],
)
def test_malformed_response_raises_signing_error(invocation: InvocationContext, response_text: str) -> None:
    signer = SigningClient(RecordingHTTPClient([response_text]))  # type: ignore
    with pytest.raises(SigningError):
        signer.request_signed_url(invocation, None)


def test_network_error_propagates(invocation: InvocationContext) -> None:
    signer = SigningClient(RecordingHTTPClient([requests.ConnectionError("unreachable")]))  # type: ignore
    with pytest.raises(requests.ConnectionError):
        signer.request_signed_url(invocation, None)


def test_signer_hostname_by_region(monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    assert get_signer_hostname() == "signer.eu-west-1.iopipe.com"
    signer = SigningClient(RecordingHTTPClient())  # type: ignore
    assert signer.get_signer_url() == "https://signer.eu-west-1.iopipe.com/"


@pytest.mark.parametrize("region", [None, "sa-east-1"])
def test_signer_hostname_falls_back_to_default_region(region: str) -> None:
    assert get_signer_hostname(region) == "signer.us-west-2.iopipe.com"
