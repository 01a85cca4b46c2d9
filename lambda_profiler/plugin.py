#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import json
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

from lambda_profiler import PLUGIN_NAME, __homepage__, __version__
from lambda_profiler.archive import ArchiveAssembler
from lambda_profiler.client import HTTPClient
from lambda_profiler.config import PluginConfig
from lambda_profiler.inspector import DEBUGGER_URL_TRIES, InspectorSession, start_debugger
from lambda_profiler.log import get_plugin_logger_adapter, setup_debug_logging
from lambda_profiler.profiler_types import CPU_PROFILE_ENTRY, HEAP_SNAPSHOT_ENTRY, InvocationContext, PluginMetadata
from lambda_profiler.profiling import ProfilingSession
from lambda_profiler.signer import SigningClient
from lambda_profiler.upload import ArchiveUploader

# uploads are kept for the host's reports; the oldest are dropped past this many
MAX_RETAINED_UPLOADS = 1000


class ProfilerPlugin:
    """
    Profiles the process serving a function invocation and uploads the results.

    pre_invoke starts CPU sampling and/or prepares a heap snapshot, post_invoke collects both into a zip
    archive and uploads it to a signed url, post_report closes the inspector session. None of the hooks
    ever raise: a profiling failure is logged and the invocation goes on unaffected.
    """

    def __init__(
        self,
        config: PluginConfig,
        invocation: Optional[InvocationContext] = None,
        token: Optional[str] = None,
        *,
        session: Optional[ProfilingSession] = None,
        signing_client: Optional[SigningClient] = None,
        http_client: Optional[HTTPClient] = None,
    ):
        self.config = config
        self.invocation = invocation
        self._token = token
        self.profiler_enabled = config.cpu_profile_enabled
        self.heapsnapshot_enabled = config.heap_snapshot_enabled
        self.enabled = self.profiler_enabled or self.heapsnapshot_enabled
        self.uploads: Deque[str] = deque(maxlen=MAX_RETAINED_UPLOADS)
        # uploads holds credentials from signing time, this tells whether the last PUT went through
        self.last_upload_succeeded = False
        self._logger = get_plugin_logger_adapter(self)
        if config.debug:
            setup_debug_logging()

        self._http_client = http_client if http_client is not None else HTTPClient()
        self._signing_client = (
            signing_client
            if signing_client is not None
            else SigningClient(self._http_client, config.signer_address, config.request_timeout)
        )
        self._session = (
            session
            if session is not None
            else ProfilingSession(
                InspectorSession(
                    config.inspector_host,
                    config.inspector_port,
                    # without a pid to signal, the inspector is either listening already or not at all
                    debugger_url_tries=DEBUGGER_URL_TRIES if config.target_pid is not None else 1,
                ),
                command_timeout=config.command_timeout,
                snapshot_timeout=config.snapshot_timeout,
            )
        )

        self.hooks: Dict[str, Callable[..., Any]] = {
            "pre:invoke": self.pre_invoke,
            "post:invoke": self.post_invoke,
            "post:report": self.post_report,
        }

    @property
    def meta(self) -> PluginMetadata:
        return {
            "name": PLUGIN_NAME,
            "version": __version__,
            "homepage": __homepage__,
            "enabled": self.enabled,
            "uploads": list(self.uploads),
        }

    @property
    def capture_count(self) -> int:
        return int(self.profiler_enabled) + int(self.heapsnapshot_enabled)

    def _set_invocation(self, invocation: Optional[InvocationContext]) -> None:
        if invocation is not None:
            self.invocation = invocation

    def pre_invoke(self, invocation: Optional[InvocationContext] = None) -> None:
        self._set_invocation(invocation)
        if not self.enabled:
            return
        try:
            if self.config.target_pid is not None:
                start_debugger(self.config.target_pid)
            self._session.start(
                cpu=self.profiler_enabled, heap=self.heapsnapshot_enabled, sample_interval=self.config.sample_rate
            )
        except Exception as e:
            self._logger.warning(f"Error starting profiling session: {e}")

    def post_invoke(self, invocation: Optional[InvocationContext] = None) -> None:
        self._set_invocation(invocation)
        self.last_upload_succeeded = False
        if not self.enabled:
            return
        try:
            self._capture_and_upload()
        except Exception as e:
            self._logger.warning(f"Error in upload: {e}", exc_info=True)

    def _capture_and_upload(self) -> None:
        if self.invocation is None:
            raise ValueError("No invocation context to sign the upload with")
        signing = self._signing_client.request_signed_url(self.invocation, self._token)
        self.uploads.append(signing.access_credential)

        uploader = ArchiveUploader(signing.signed_upload_url, self._http_client, self.config.upload_timeout)
        archive = ArchiveAssembler(self.capture_count, on_data=uploader.add_chunk, on_finish=uploader.upload)

        # both captures are requested before waiting on either
        cpu_profile = self._session.stop_sampling() if self.profiler_enabled else None
        if self.heapsnapshot_enabled:
            archive.register_entry(HEAP_SNAPSHOT_ENTRY, self._session.take_heap_snapshot())
        if cpu_profile is not None:
            try:
                profile = cpu_profile.result(self.config.command_timeout)
            except Exception as e:
                self._logger.warning(f"Error stopping CPU profiler: {e}")
                archive.skip_entry(CPU_PROFILE_ENTRY)
            else:
                self._logger.debug("Adding cpuprofile to archive")
                archive.register_entry(CPU_PROFILE_ENTRY, json.dumps(profile))

        assert archive.finished, "archive should be finished once every entry was registered or skipped"
        self.last_upload_succeeded = uploader.uploaded
        self._logger.debug(f"Uploaded profiling archive with entries {archive.entry_names}")

    def post_report(self) -> None:
        self._session.disconnect()


def profiler_plugin(**options: Any) -> Callable[[Any], ProfilerPlugin]:
    """
    Returns a factory the host calls with its invocation instance, an object with `context` (the Lambda
    context), `start_timestamp` (epoch ms) and `config` (a dict, whose `client_id` is the signing token).
    """
    config = PluginConfig.from_options(**options)

    def instantiate(invocation_instance: Any) -> ProfilerPlugin:
        context = getattr(invocation_instance, "context", None)
        invocation = (
            InvocationContext.from_lambda_context(context, getattr(invocation_instance, "start_timestamp", None))
            if context is not None
            else None
        )
        host_config = getattr(invocation_instance, "config", None) or {}
        return ProfilerPlugin(config, invocation, token=host_config.get("client_id"))

    return instantiate
