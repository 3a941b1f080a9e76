from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from .chunking import DEFAULT_SPLITTER, Chunk, join_segments, render_prompt, split_segments
from .client import RemoteCallError
from .files import (
    AVAILABLE_FILE_EXTENSIONS,
    atomic_write,
    default_output_path,
    file_extension,
    read_text,
)
from .tokens import ChunkPlanner

logger = logging.getLogger(__name__)


class CompletionBackend(Protocol):
    async def complete(self, system_prompt: str, user_text: str) -> str:
        ...


class TranslationFailed(RuntimeError):
    """A chunk could not be translated; the whole run is abandoned."""

    def __init__(self, *, chunk_index: int, completed: int, cause: RemoteCallError) -> None:
        super().__init__(f"Translation of chunk {chunk_index + 1} failed: {cause}")
        self.chunk_index = chunk_index
        self.completed = completed
        self.cause = cause

    @property
    def hints(self) -> List[str]:
        return self.cause.hints


@dataclass
class TranslationStats:
    chunks: int = 0
    api_calls: int = 0
    estimated_tokens: int = 0
    empty_results: int = 0
    elapsed: float = 0.0


ProgressCallback = Callable[[int], None]


class ChunkTranslator:
    def __init__(
        self,
        backend: CompletionBackend,
        *,
        model: str,
        prompt_template: str,
        planner: Optional[ChunkPlanner] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.prompt_template = prompt_template
        self.planner = planner or ChunkPlanner.for_model(model)
        self.progress_callback = progress_callback
        self.stats = TranslationStats()

    async def translate(
        self,
        text: str,
        target_language: str,
        target_file_ext: str,
        splitter: str = DEFAULT_SPLITTER,
    ) -> str:
        """Translate ``text`` chunk by chunk and return the reassembled document.

        Segments are accumulated until adding the next one would push the
        buffer over the planner's budget; the buffer is then translated and a
        new one starts with that segment. A segment that alone exceeds the
        budget is still sent whole. Raises :class:`TranslationFailed` on the
        first failed request.
        """

        prompt = render_prompt(self.prompt_template, target_language, target_file_ext)
        segments = split_segments(text, splitter)
        chunks: List[Chunk] = []
        buffer = ""
        started = time.monotonic()

        logger.info(
            "%s Start translating with %s...",
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            self.model,
        )
        last = len(segments) - 1
        for idx, segment in enumerate(segments):
            if self.planner.should_flush(buffer, segment):
                chunks.append(await self._translate_chunk(len(chunks), buffer, prompt))
                buffer = ""
            buffer += segment + (splitter if idx < last else "")
        chunks.append(await self._translate_chunk(len(chunks), buffer, prompt))

        self.stats.elapsed += time.monotonic() - started
        logger.info("Translation completed! (%d chunks)", len(chunks))
        return join_segments((chunk.output() for chunk in chunks), splitter)

    async def translate_file(
        self,
        source: Path,
        target_language: str,
        *,
        destination: Optional[Path] = None,
        splitter: str = DEFAULT_SPLITTER,
    ) -> Path:
        extension = file_extension(source)
        if extension not in AVAILABLE_FILE_EXTENSIONS:
            supported = ", ".join(sorted(AVAILABLE_FILE_EXTENSIONS))
            raise ValueError(f"Unsupported file extension '.{extension}' (supported: {supported})")

        text = read_text(source)
        target = destination or default_output_path(source, target_language)
        logger.info("Translating %s -> %s", source, target)
        translated = await self.translate(text, target_language, extension, splitter)
        atomic_write(target, translated)
        return target

    async def _translate_chunk(self, index: int, content: str, prompt: str) -> Chunk:
        chunk = Chunk(index=index, content=content)
        tokens = self.planner.estimate(content)
        logger.debug("Sending chunk %d (%d chars, ~%d tokens)", index + 1, len(content), tokens)
        try:
            translation = await self.backend.complete(prompt, content)
        except RemoteCallError as exc:
            raise TranslationFailed(chunk_index=index, completed=index, cause=exc) from exc
        self.stats.api_calls += 1
        self.stats.chunks += 1
        self.stats.estimated_tokens += tokens
        if translation == "":
            self.stats.empty_results += 1
            logger.info("Possible error: translation result of chunk %d is empty", index + 1)
        chunk.translation = translation
        if self.progress_callback:
            self.progress_callback(1)
        return chunk
