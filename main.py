"""
Production entrypoint for the valuation engine.

Binds to 0.0.0.0:$PORT with reload disabled; use run.py for development.
"""

import uvicorn

from utils.config import Config
from utils.logging_config import configure_logging


if __name__ == "__main__":
    config = Config.load()
    configure_logging(config.log_level)
    print(f"Starting Comparable Valuation Engine on port {config.port}")

    # Import after logging is configured so startup messages are kept
    from web.app import app

    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level=config.log_level.lower())
