#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
from typing import Dict, Optional, Union

import requests
from requests import Session

from lambda_profiler import __version__
from lambda_profiler.config import DEFAULT_REQUEST_TIMEOUT
from lambda_profiler.exceptions import APIError
from lambda_profiler.log import get_logger_adapter

logger = get_logger_adapter(__name__)

SUPPORTED_METHODS = ("POST", "PUT")


class HTTPClient:
    """
    Performs single POST / PUT requests and returns the raw response body.
    Bodies are sent as given (with a known length), never with chunked transfer encoding.
    """

    def __init__(self, verify: bool = True):
        self._verify = verify
        self._init_session()

    def _init_session(self) -> None:
        self._session: Session = requests.Session()
        self._session.verify = self._verify
        self._session.headers.update({"User-Agent": f"lambda-profiler/{__version__}"})

    def request(
        self,
        method: str,
        url: str,
        body: Union[bytes, str],
        token: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> str:
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"unsupported method {method!r}, only {', '.join(SUPPORTED_METHODS)} are supported")

        headers: Dict[str, str] = {}
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        if isinstance(body, str):
            body = body.encode("utf-8")
            headers["Content-Type"] = "application/json"

        logger.debug(f"{method} request to {url.split('?', 1)[0]} ({len(body)} bytes)")
        resp = self._session.request(method, url, data=body, headers=headers, timeout=timeout)

        if 400 <= resp.status_code < 500:
            try:
                response_data = resp.json()
            except ValueError:
                raise APIError(resp.text) from None
            if not isinstance(response_data, dict):
                raise APIError(resp.text)
            raise APIError(response_data.get("message", "(no message in response)"), response_data)
        else:
            resp.raise_for_status()
        return resp.text
