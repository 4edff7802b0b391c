"""
Filename policy shared by connectors.

Timestamps are Unix milliseconds. The clock is injectable so names are
reproducible in tests.
"""

import re
import time
from typing import Callable, Optional

Clock = Callable[[], int]

# Greedy stem: "a.b.csv" -> ("a.b", "csv")
FILE_EXTENSION = re.compile(r"(.*)\.(.*)$")


def unix_millis() -> int:
    return int(time.time() * 1000)


def append_timestamp(base: str, clock: Clock = unix_millis) -> str:
    """<base><T>, no separator."""
    return f"{base}{clock()}"


def unique_filename(name: str, clock: Clock = unix_millis) -> str:
    """
    Make a name unique by inserting a timestamp before the extension.

    "report.csv" -> "report_T.csv", "report" -> "report_T"
    """
    match = FILE_EXTENSION.match(name)
    if match:
        return f"{match.group(1)}_{clock()}.{match.group(2)}"
    return f"{name}_{clock()}"


def resolve_filename(
    base: str,
    extension: Optional[str] = None,
    *,
    overwrite: bool = True,
    clock: Clock = unix_millis,
) -> str:
    """Join base and extension, then timestamp it unless overwriting is allowed."""
    name = f"{base}.{extension}" if extension else base
    if overwrite:
        return name
    return unique_filename(name, clock)
