"""
CLI entry point for manual ingestion and question answering.
"""

import logging

from .components.cli.commands import cli
from .utils.logging_config import LOG_FORMAT, setup_logger

# Configure logging
logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
setup_logger("manual_rag")

if __name__ == '__main__':
    cli()
