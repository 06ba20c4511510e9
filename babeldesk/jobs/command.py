"""Argument vector construction for the external translation tool."""

import re
from typing import List

from pydantic import BaseModel, Field

_WHITESPACE = re.compile(r"\s+")


class ToolOptions(BaseModel):
    """Per-run options. ``base_args`` is passed through untouched."""
    base_args: List[str] = Field(default_factory=list)
    secret_values: List[str] = Field(default_factory=list)
    bilingual: bool = False
    debug: bool = False
    extra_flags: str = ""


def split_extra_flags(flags: str) -> List[str]:
    """Split free-form extra arguments on whitespace, dropping empties."""
    return [flag for flag in _WHITESPACE.split(flags or "") if flag]


def build_arguments(source_path: str, output_dir: str, options: ToolOptions) -> List[str]:
    args = list(options.base_args)
    args += [
        "--files",
        source_path,
        "--output",
        output_dir,
        "--watermark-output-mode",
        "no_watermark",
    ]
    if options.debug:
        # debug mode prints the structured progress dumps
        args.append("--debug")
    if options.bilingual:
        args.append("--bilingual")
    args += split_extra_flags(options.extra_flags)
    return args


def render_command(executable: str, args: List[str], secrets: List[str]) -> str:
    """Printable command line with secret values masked."""
    masked = ["***" if arg in secrets else arg for arg in args]
    return " ".join([executable, *masked])
