#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import logging
import signal
import sys
import time
import uuid
from threading import Event
from types import FrameType
from typing import List, Optional

import configargparse
from psutil import NoSuchProcess, Process

from lambda_profiler import __version__
from lambda_profiler.config import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_INSPECTOR_HOST,
    DEFAULT_INSPECTOR_PORT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_SNAPSHOT_TIMEOUT,
    DEFAULT_UPLOAD_TIMEOUT,
    PluginConfig,
)
from lambda_profiler.log import get_logger_adapter, initial_root_logger_setup
from lambda_profiler.plugin import ProfilerPlugin
from lambda_profiler.profiler_types import InvocationContext, positive_integer

logger: logging.LoggerAdapter = get_logger_adapter("lambda_profiler.main")

DEFAULT_PROFILING_DURATION = 10
DEFAULT_LOG_MAX_SIZE = 1024 * 1024 * 5
DEFAULT_LOG_BACKUP_COUNT = 1

stop_event = Event()


def sigint_handler(sig: int, frame: Optional[FrameType]) -> None:
    if stop_event.is_set():
        return
    logger.info("Stopping the capture early, collecting what was profiled so far")
    stop_event.set()


def parse_cmd_args(argv: Optional[List[str]] = None) -> configargparse.Namespace:
    parser = configargparse.ArgumentParser(
        description="Captures a CPU profile and/or heap snapshot of a running Node.js process through its inspector,"
        " and uploads them as a zip archive to a signed url.",
        auto_env_var_prefix="lambda_profiler_",
        add_config_file_help=True,
        add_env_var_help=False,
        default_config_files=["/etc/lambda-profiler/config.ini"],
    )
    parser.add_argument("--config", is_config_file=True, help="Config file path")
    parser.add_argument(
        "--pid",
        dest="target_pid",
        type=positive_integer,
        help="PID of a Node.js process to open the inspector of (with SIGUSR1). Without it, an inspector must"
        " already be listening on --inspector-host:--inspector-port",
    )
    parser.add_argument("--inspector-host", default=DEFAULT_INSPECTOR_HOST, help="(default: %(default)s)")
    parser.add_argument("--inspector-port", type=positive_integer, default=DEFAULT_INSPECTOR_PORT)
    parser.add_argument(
        "-d",
        "--profiling-duration",
        type=positive_integer,
        dest="duration",
        default=DEFAULT_PROFILING_DURATION,
        help="Profiling duration in seconds (default: %(default)s)",
    )
    parser.add_argument("--cpu", dest="cpu", action="store_true", help="Capture a CPU profile (default)")
    parser.add_argument("--no-cpu", dest="cpu", action="store_false", help="Do not capture a CPU profile")
    parser.set_defaults(cpu=True)
    parser.add_argument("--heap-snapshot", action="store_true", default=False, help="Capture a heap snapshot")
    parser.add_argument(
        "--sample-rate",
        type=positive_integer,
        default=DEFAULT_SAMPLE_RATE,
        help="CPU sampling interval in microseconds (default: %(default)s)",
    )

    signing = parser.add_argument_group("signing")
    signing.add_argument("--token", dest="server_token", help="Client token sent to the signing service")
    signing.add_argument("--signer-address", help="Signing service url (default: by AWS_REGION)")
    signing.add_argument("--function-arn", default="", help="Function ARN to sign the upload for")
    signing.add_argument("--request-id", default=None, help="Request id to sign the upload for (default: random)")

    timeouts = parser.add_argument_group("timeouts")
    timeouts.add_argument("--request-timeout", type=float, default=DEFAULT_REQUEST_TIMEOUT)
    timeouts.add_argument("--upload-timeout", type=float, default=DEFAULT_UPLOAD_TIMEOUT)
    timeouts.add_argument("--command-timeout", type=float, default=DEFAULT_COMMAND_TIMEOUT)
    timeouts.add_argument("--snapshot-timeout", type=float, default=DEFAULT_SNAPSHOT_TIMEOUT)

    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("-v", "--verbose", action="store_true", default=False, dest="verbose")

    logging_options = parser.add_argument_group("logging")
    logging_options.add_argument("--log-file", action="store", type=str, dest="log_file", default=None)
    logging_options.add_argument(
        "--log-rotate-max-size", action="store", type=positive_integer, default=DEFAULT_LOG_MAX_SIZE
    )
    logging_options.add_argument(
        "--log-rotate-backup-count", action="store", type=positive_integer, default=DEFAULT_LOG_BACKUP_COUNT
    )

    args = parser.parse_args(argv)
    if not args.cpu and not args.heap_snapshot:
        parser.error("Nothing to capture: --no-cpu was given without --heap-snapshot")
    return args


def config_from_args(args: configargparse.Namespace) -> PluginConfig:
    return PluginConfig.from_options(
        enabled=args.cpu,
        heap_snapshot=args.heap_snapshot,
        sample_rate=args.sample_rate,
        debug=False,
        inspector_host=args.inspector_host,
        inspector_port=args.inspector_port,
        target_pid=args.target_pid,
        signer_address=args.signer_address,
        request_timeout=args.request_timeout,
        upload_timeout=args.upload_timeout,
        command_timeout=args.command_timeout,
        snapshot_timeout=args.snapshot_timeout,
    )


def verify_preconditions(args: configargparse.Namespace) -> None:
    if args.target_pid is not None:
        try:
            Process(args.target_pid)
        except NoSuchProcess:
            print(f"There is no process with the given PID {args.target_pid}", file=sys.stderr)
            sys.exit(1)


def run_capture(plugin: ProfilerPlugin, duration: int) -> None:
    plugin.pre_invoke()
    logger.info(f"Profiling for {duration} seconds")
    stop_event.wait(duration)
    plugin.post_invoke()
    plugin.post_report()


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_cmd_args(argv)
    verify_preconditions(args)

    global logger
    logger = initial_root_logger_setup(
        logging.DEBUG if args.verbose else logging.INFO,
        args.log_file,
        args.log_rotate_max_size,
        args.log_rotate_backup_count,
    )
    signal.signal(signal.SIGINT, sigint_handler)
    signal.signal(signal.SIGTERM, sigint_handler)

    invocation = InvocationContext(
        function_arn=args.function_arn,
        request_id=args.request_id or str(uuid.uuid4()),
        start_timestamp=int(time.time() * 1000),
    )
    plugin = ProfilerPlugin(config_from_args(args), invocation, token=args.server_token)
    logger.info(f"Running lambda-profiler {__version__} (request id {invocation.request_id})")
    run_capture(plugin, args.duration)

    # credentials are recorded when the url is signed, the upload itself may still have failed
    if not plugin.last_upload_succeeded:
        logger.error("Profiling archive was not uploaded")
        sys.exit(1)
    for access in plugin.meta["uploads"]:
        print(access)


if __name__ == "__main__":
    main()
