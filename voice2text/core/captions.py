"""Caption Cleaner: turn the indexer's WebVTT output into plain text.

WHY: Azure Media Indexer 2 emits <stem>_aud_SpReco.vtt. Editors want the
spoken words only, without cue timings, the WEBVTT header's blank
separators, or the per-cue confidence notes.

HOW: Reads every line of the caption file and keeps those that do not
contain "-->", are not empty, and do not start with "NOTE Confidence:".
The survivors are written, in order, to <caption file>.txt.

RULES:
- A missing caption file is a silent no-op (returns None, writes nothing)
- Line order is preserved
- Running twice on the same caption file produces the same output
- Output is UTF-8 with one newline after every line
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional

from voice2text.config import CAPTION_SUFFIX

TIMING_MARKER = "-->"
CONFIDENCE_PREFIX = "NOTE Confidence:"


def caption_path_for(input_path: str | Path) -> Path:
    """<input-dir>/<input-stem>_aud_SpReco.vtt"""
    source = Path(input_path)
    return source.parent / "{}{}".format(source.stem, CAPTION_SUFFIX)


def transcript_path_for(caption_path: str | Path) -> Path:
    caption = Path(caption_path)
    return caption.with_name(caption.name + ".txt")


def is_transcript_line(line: str) -> bool:
    return bool(line) and TIMING_MARKER not in line and not line.startswith(CONFIDENCE_PREFIX)


def clean_caption_lines(lines: Iterable[str]) -> List[str]:
    """Drop timing cues, empty lines and confidence notes; keep order."""
    return [line for line in lines if is_transcript_line(line)]


def process_vtt_file(input_path: str | Path) -> Optional[Path]:
    """Write the plain-text transcript for the given input media file.

    Args:
        input_path: The input media file; the caption file name is
            derived from it.

    Returns:
        Path of the written transcript, or None if no caption file exists.
    """
    caption = caption_path_for(input_path)
    if not caption.is_file():
        return None

    lines = caption.read_text(encoding="utf-8-sig").splitlines()
    cleaned = clean_caption_lines(lines)

    output = transcript_path_for(caption)
    output.write_text("".join(line + "\n" for line in cleaned), encoding="utf-8")
    return output
