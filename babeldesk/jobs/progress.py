"""Progress estimation from the translation tool's log output.

The tool prints a human-oriented log. With ``--debug`` it also dumps
Python-repr style dictionaries that carry an ``overall_progress`` float;
those are used when present. Otherwise a table of known log messages maps
pipeline stages to fixed milestones. Progress never moves backwards.
"""

import logging
import math
import re
from typing import List, Optional, Pattern, Tuple

from babeldesk.jobs.models import ProgressUpdate

logger = logging.getLogger(__name__)

# e.g. 'overall_progress': 74.86959453046502
_OVERALL_PROGRESS = re.compile(r"""['"]overall_progress['"]\s*:\s*([-+\d.eE]+)""")
_STAGE = re.compile(r"""['"]stage['"]\s*:\s*['"]([^'"]+)['"]""")

# Ordered by pipeline position. The first matching row wins.
PROGRESS_MILESTONES: List[Tuple[Pattern[str], int]] = [
    (re.compile(r"start to translate", re.I), 5),
    (re.compile(r"Loading ONNX model", re.I), 8),
    (re.compile(r"Parse PDF and Create Intermediate", re.I), 15),
    (re.compile(r"Parse Page Layout", re.I), 25),
    (re.compile(r"Automatic Term Extraction", re.I), 35),
    (re.compile(r"Starting term extraction", re.I), 40),
    (re.compile(r"Found title paragraph", re.I), 50),
    (re.compile(r"Translate Paragraphs", re.I), 60),
    (re.compile(r"Translation completed\. Total:", re.I), 85),
    (re.compile(r"Typesetting", re.I), 90),
    (re.compile(r"Save PDF", re.I), 95),
    (re.compile(r"finish translate:", re.I), 98),
]


def parse_structured_progress(line: str) -> Optional[Tuple[int, Optional[str]]]:
    """Extract ``(percent, stage)`` from a debug progress dump.

    Returns None when the field is absent, malformed or outside 0-100.
    """
    match = _OVERALL_PROGRESS.search(line)
    if not match:
        return None
    try:
        value = float(match.group(1))
    except ValueError:
        logger.debug("Unparseable overall_progress value: %r", match.group(1))
        return None
    if not 0 <= value <= 100:
        return None
    stage_match = _STAGE.search(line)
    return int(math.floor(value + 0.5)), (stage_match.group(1) if stage_match else None)


def match_milestone(line: str) -> Optional[int]:
    for pattern, value in PROGRESS_MILESTONES:
        if pattern.search(line):
            return value
    return None


def interpret_line(line: str, current: int) -> Optional[ProgressUpdate]:
    """Progress update for ``line`` if it moves past ``current``."""
    structured = parse_structured_progress(line)
    if structured is not None:
        value, stage = structured
        if value > current:
            return ProgressUpdate(progress=value, source="structured", stage=stage)

    milestone = match_milestone(line)
    if milestone is not None and milestone > current:
        return ProgressUpdate(progress=milestone, source="milestone")
    return None
