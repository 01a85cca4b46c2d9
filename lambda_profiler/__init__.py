#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import logging

__version__ = "0.3.0"
__homepage__ = "https://github.com/Granulate/lambda-profiler"

PLUGIN_NAME = "lambda-profiler"

# failures are silent unless a handler is attached (see log.setup_debug_logging)
logging.getLogger("lambda_profiler").addHandler(logging.NullHandler())
