#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
from typing import Any, Dict, Optional


class APIError(Exception):
    def __init__(self, message: str, full_data: dict = None):
        self.message = message
        self.full_data = full_data

    def __str__(self) -> str:
        return self.message


class SigningError(Exception):
    pass


class InspectorError(Exception):
    """
    An error response to a DevTools protocol command.
    """

    def __init__(self, method: str, error: Dict[str, Any]):
        self.method = method
        self.code: Optional[int] = error.get("code")
        self.message: str = error.get("message", "(no message in response)")
        super().__init__(f"{method} failed: {self.message} (code {self.code})")


class InspectorNotConnected(Exception):
    pass


class InspectorDebuggerUrlNotFound(Exception):
    pass


class SnapshotStreamError(Exception):
    pass


class SnapshotStreamTimeout(SnapshotStreamError):
    def __init__(self, timeout: float):
        super().__init__(f"No heap snapshot chunk received for {timeout} seconds")
        self.timeout = timeout
