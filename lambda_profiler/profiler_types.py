#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, TypedDict, Union

import configargparse

CPU_PROFILE_ENTRY = "profile.cpuprofile"
HEAP_SNAPSHOT_ENTRY = "profile.heapsnapshot"

# a blob is written as-is, an iterable is consumed chunk by chunk as it is produced
ArtifactPayload = Union[bytes, str, Iterable[bytes]]


@dataclass(frozen=True)
class InvocationContext:
    function_arn: str
    request_id: str
    start_timestamp: int  # epoch milliseconds

    @classmethod
    def from_lambda_context(cls, context: Any, start_timestamp: Optional[int] = None) -> "InvocationContext":
        return cls(
            function_arn=getattr(context, "invoked_function_arn", ""),
            request_id=getattr(context, "aws_request_id", ""),
            start_timestamp=start_timestamp if start_timestamp is not None else int(time.time() * 1000),
        )


@dataclass(frozen=True)
class SigningResult:
    signed_upload_url: str
    access_credential: str


@dataclass(frozen=True)
class ArtifactEntry:
    name: str
    payload: ArtifactPayload


class PluginMetadata(TypedDict):
    name: str
    version: str
    homepage: str
    enabled: bool
    uploads: List[str]


def positive_integer(value_str: str) -> int:
    value = int(value_str)
    if value <= 0:
        raise configargparse.ArgumentTypeError("invalid positive integer value: {!r}".format(value))
    return value
