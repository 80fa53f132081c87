#!/usr/bin/env python3
"""
Development server for the valuation engine (auto-reload when DEBUG=true).
"""

import uvicorn

from utils.config import Config
from utils.logging_config import configure_logging


def main():
    config = Config.load()
    configure_logging(config.log_level)

    print(f"Comparable Valuation Engine (dev) at http://{config.host}:{config.port}")
    print(f"  comparables: {config.comparables_path}")
    print(f"  comp sets:   {config.compsets_path}")
    print(f"  default radius {config.default_radius_km:g} km, recency warning at {config.recency_warn_months:g} months")

    uvicorn.run(
        "web.app:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
