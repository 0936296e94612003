"""
Logging setup for the ffnet library.
"""

import logging
import sys


DEBUG_FORMAT = "%(asctime)s %(levelname)8s [%(module)12s.%(funcName)-12s:%(lineno)4d] %(message)s"
SCREEN_FORMAT = "%(asctime)s | %(message)s"


def setup_logging(name="ffnet", level="INFO"):
    log = logging.getLogger(name=name)
    log.handlers = []

    # Print "INFO" and above messages to the screen.
    handler_screen = logging.StreamHandler(sys.stdout)
    handler_screen.setFormatter(logging.Formatter(DEBUG_FORMAT if level == "DEBUG" else SCREEN_FORMAT,
                                                  datefmt="%H:%M:%S"))
    handler_screen.setLevel(level)
    log.addHandler(handler_screen)

    log.setLevel("DEBUG")  # Handlers filter by their own levels.

    return log
