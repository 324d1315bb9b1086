import logging
import sys


def setup_logging(level=logging.INFO):
    """
    Configure the root logger for training output.

    Uses the format "timestamp - logger name - level - message" and attaches a
    StreamHandler that writes to stdout.
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )
