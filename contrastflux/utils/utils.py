import logging
import sys
import threading
import time
from contextlib import contextmanager
from functools import wraps
from typing import Tuple, List

import numpy as np
import polars as pl

_INDENT = threading.local()


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Configure a logger with consistent formatting (configured once)."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(level)
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s - %(message)s", datefmt="%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False

    return logger


logger = setup_logger("contrastflux")


def _indented(msg: str) -> str:
    return "  " * getattr(_INDENT, "level", 0) + str(msg)


def log_info(msg: str) -> None:
    logger.info(_indented(msg))


def log_warning(msg: str) -> None:
    logger.warning(_indented(msg))


@contextmanager
def log_indent():
    """Indent every log line emitted by this thread inside the block by one level."""
    _INDENT.level = getattr(_INDENT, "level", 0) + 1
    try:
        yield
    finally:
        _INDENT.level -= 1


def log_time(step: str):
    """Decorator logging the wall time of a pipeline step."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed = time.perf_counter() - start
            logger.info(_indented(f"{step} - done in {elapsed:.2f}s"))
            return result
        return wrapper
    return decorator


def polars_matrix_to_numpy(df: pl.DataFrame, index_col: str = "INDEX") -> Tuple[np.ndarray, List[str]]:
    """Split a wide polars table into (matrix, index) keeping column order."""
    if df is None:
        return None, None
    index = df.get_column(index_col).cast(pl.Utf8).to_list()
    mat = df.drop(index_col).to_numpy().astype(np.float64)
    return mat, index
