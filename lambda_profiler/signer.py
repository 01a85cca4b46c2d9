#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import json
import os
from typing import Optional

from lambda_profiler.client import HTTPClient
from lambda_profiler.config import DEFAULT_REQUEST_TIMEOUT
from lambda_profiler.exceptions import SigningError
from lambda_profiler.log import get_logger_adapter
from lambda_profiler.profiler_types import InvocationContext, SigningResult

logger = get_logger_adapter(__name__)

SUPPORTED_SIGNER_REGIONS = (
    "ap-northeast-1",
    "ap-southeast-2",
    "eu-west-1",
    "us-east-1",
    "us-east-2",
    "us-west-1",
    "us-west-2",
)
DEFAULT_SIGNER_REGION = "us-west-2"
ARCHIVE_EXTENSION = ".zip"


def get_signer_hostname(region: Optional[str] = None) -> str:
    if region is None:
        region = os.environ.get("AWS_REGION")
    if region not in SUPPORTED_SIGNER_REGIONS:
        region = DEFAULT_SIGNER_REGION
    return f"signer.{region}.iopipe.com"


class SigningClient:
    def __init__(
        self,
        http_client: HTTPClient,
        signer_address: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self._client = http_client
        self._signer_address = signer_address
        self._timeout = timeout

    def get_signer_url(self) -> str:
        if self._signer_address is not None:
            return self._signer_address
        return f"https://{get_signer_hostname()}/"

    def request_signed_url(self, invocation: InvocationContext, token: Optional[str]) -> SigningResult:
        url = self.get_signer_url()
        logger.debug(f"Requesting signed url from {url}")
        response_text = self._client.request(
            "POST",
            url,
            json.dumps(
                {
                    "arn": invocation.function_arn,
                    "requestId": invocation.request_id,
                    "timestamp": invocation.start_timestamp,
                    "extension": ARCHIVE_EXTENSION,
                }
            ),
            token=token,
            timeout=self._timeout,
        )

        try:
            response = json.loads(response_text)
            return SigningResult(
                signed_upload_url=response["signedRequest"],
                access_credential=response["jwtAccess"],
            )
        except (ValueError, KeyError, TypeError) as e:
            raise SigningError(f"Unexpected response from signer: {response_text[:200]!r}") from e
