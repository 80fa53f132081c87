"""
Logging setup shared by the web service and the CLI.
"""

import logging
import os
from typing import Optional, Union

_configured = False

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[Union[str, int]] = None) -> None:
    """
    Configure root logging once.

    Priority: explicit arg > AVM_LOG_LEVEL > DEBUG when DEBUG=true > INFO.
    Safe no-op if already configured.
    """
    global _configured
    if _configured:
        return
    if level is None:
        env_level = os.getenv("AVM_LOG_LEVEL")
        if env_level:
            level = env_level.upper()
        elif os.getenv("DEBUG", "false").lower() == "true":
            level = "DEBUG"
        else:
            level = "INFO"
    logging.basicConfig(level=level, format=LOG_FORMAT)
    _configured = True
