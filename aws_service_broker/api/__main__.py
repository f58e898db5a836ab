"""Main entry point for the API server."""

import sys
import logging

from aws_service_broker.api.service_broker import run_server
from aws_service_broker.config import Config
from aws_service_broker.logging_config import setup_logging

if __name__ == "__main__":
    config = Config.from_env()
    setup_logging(config.logging)
    logger = logging.getLogger(__name__)

    logger.info("Starting AWS Service Broker API server...")
    try:
        run_server(config)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Server failed to start: {e}")
        sys.exit(1)
