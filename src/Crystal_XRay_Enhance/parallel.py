import logging
import os
from concurrent.futures import ThreadPoolExecutor

import cv2

from .errors import CancelledError

logger = logging.getLogger(__name__)


def resolve_workers(workers=None):
    """
    Number of row workers to use.
    - workers: requested count; None means one per available core
    """
    if workers is None:
        return os.cpu_count() or 4
    return max(1, int(workers))


def row_blocks(height, workers):
    """
    Split [0, height) into at most `workers` disjoint, ordered row ranges.
    Returns a list of (y0, y1) tuples.
    """
    n = max(1, min(workers, height))
    step, extra = divmod(height, n)
    blocks = []
    y0 = 0
    for i in range(n):
        y1 = y0 + step + (1 if i < extra else 0)
        blocks.append((y0, y1))
        y0 = y1
    return blocks


def run_rows(height, fn, workers=None):
    """
    Call fn(y0, y1) for every row block and wait for all of them.
    fn must write only to rows [y0, y1) of its output and only read shared
    inputs, so blocks never overlap. Exceptions raised in a worker propagate.
    """
    blocks = row_blocks(height, resolve_workers(workers))
    if len(blocks) == 1:
        fn(*blocks[0])
        return

    with ThreadPoolExecutor(max_workers=len(blocks)) as ex:
        futures = [ex.submit(fn, y0, y1) for y0, y1 in blocks]
        for fut in futures:
            fut.result()


def check_cancelled(cancel, stage):
    """
    Checkpoint between stages.
    - cancel: None or any object with is_set() (e.g. threading.Event)
    - stage: label used in the error message
    """
    if cancel is not None and cancel.is_set():
        logger.info("Cancelled before %s", stage)
        raise CancelledError(f"Processing cancelled before {stage}")


def configure_opencv_threads(workers=None):
    """Match OpenCV's internal thread pool to the row worker count."""
    n = resolve_workers(workers)
    cv2.setNumThreads(n)
    return n
