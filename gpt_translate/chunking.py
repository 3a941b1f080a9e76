from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

DEFAULT_SPLITTER = "\n\n"

LANGUAGE_PLACEHOLDER = "{targetLanguage}"
FILE_EXT_PLACEHOLDER = "{targetFileExt}"


@dataclass
class Chunk:
    """A run of segments sent to the model in a single request."""

    index: int
    content: str
    translation: Optional[str] = None

    def output(self) -> str:
        return self.translation if self.translation is not None else self.content


def split_segments(text: str, splitter: str = DEFAULT_SPLITTER) -> List[str]:
    """Split ``text`` on ``splitter``.

    The splitter is dropped from the segments; ``join_segments`` puts it back,
    so ``join_segments(split_segments(text, s), s) == text`` always holds.
    """

    if not splitter:
        raise ValueError("The splitter must be a non-empty string")
    return text.split(splitter)


def join_segments(segments: Iterable[str], splitter: str = DEFAULT_SPLITTER) -> str:
    return splitter.join(segments)


def render_prompt(template: str, target_language: str, target_file_ext: str) -> str:
    return template.replace(LANGUAGE_PLACEHOLDER, target_language).replace(
        FILE_EXT_PLACEHOLDER, target_file_ext
    )
