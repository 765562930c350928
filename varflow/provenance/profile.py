"""Timing of pipeline run sections.
"""
import contextlib
import time

from varflow.log import logger

@contextlib.contextmanager
def report(label):
    """Log timing information for a section of a run."""
    logger.info("Timing: %s" % label)
    start = time.time()
    yield None
    logger.debug("Timing: %s finished in %.1fs" % (label, time.time() - start))
