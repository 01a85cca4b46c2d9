#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import dataclasses
import os
from dataclasses import dataclass
from typing import Any, Optional

ENABLE_PROFILER_ENV = "LAMBDA_PROFILER_ENABLE_PROFILER"
ENABLE_HEAPSNAPSHOT_ENV = "LAMBDA_PROFILER_ENABLE_HEAPSNAPSHOT"

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")

DEFAULT_SAMPLE_RATE = 1000  # microseconds
DEFAULT_INSPECTOR_HOST = "127.0.0.1"
# the port node opens its inspector on when started with --inspect or signalled with SIGUSR1
DEFAULT_INSPECTOR_PORT = 9229
DEFAULT_REQUEST_TIMEOUT = 5
DEFAULT_UPLOAD_TIMEOUT = 120
DEFAULT_COMMAND_TIMEOUT = 10
DEFAULT_SNAPSHOT_TIMEOUT = 60


def enabled(env_var: str, default: bool) -> bool:
    """
    An environment override, when set to a recognizable boolean, wins over the config default.
    """
    value = os.environ.get(env_var)
    if value is None:
        return default
    value = value.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    return default


@dataclass(frozen=True)
class PluginConfig:
    enabled: bool = False
    heap_snapshot: bool = False
    sample_rate: int = DEFAULT_SAMPLE_RATE
    debug: bool = False
    inspector_host: str = DEFAULT_INSPECTOR_HOST
    inspector_port: int = DEFAULT_INSPECTOR_PORT
    target_pid: Optional[int] = None
    signer_address: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    upload_timeout: float = DEFAULT_UPLOAD_TIMEOUT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    snapshot_timeout: float = DEFAULT_SNAPSHOT_TIMEOUT

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be a positive number of microseconds (got {self.sample_rate})")

    @classmethod
    def from_options(cls, **overrides: Any) -> "PluginConfig":
        # unknown keys raise TypeError from replace()
        return dataclasses.replace(cls(), **overrides)

    @property
    def cpu_profile_enabled(self) -> bool:
        return enabled(ENABLE_PROFILER_ENV, self.enabled)

    @property
    def heap_snapshot_enabled(self) -> bool:
        return enabled(ENABLE_HEAPSNAPSHOT_ENV, self.heap_snapshot)
