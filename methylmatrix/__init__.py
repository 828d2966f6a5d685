"""
MethylMatrix - Methylation and Signal Profiling

Differential DNA-methylation region calling for paired designs and
signal-enrichment matrices around genomic landmarks.
"""

import logging

from .config import settings

__version__ = "0.1.0"
__author__ = "MethylMatrix Team"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level=None) -> None:
    """Configure root logging for scripts; the library itself never calls this.

    The level defaults to ``settings.log_level`` (METHYLMATRIX_LOG_LEVEL).
    """
    if level is None:
        level = settings.log_level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
