from __future__ import annotations

import argparse
import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .chunking import DEFAULT_SPLITTER, split_segments
from .client import ChatCompletionClient
from .config import (
    DEFAULT_MODEL,
    ConfigError,
    TranslatorConfig,
    env_config,
    load_config,
    load_env_file,
    merge_config,
)
from .files import FileReadError, default_output_path, is_supported, read_text
from .log import configure_logging
from .progress import chunk_progress
from .tokens import ChunkPlanner, TiktokenEstimator, approximate_tokens, token_budget
from .translator import ChunkTranslator, ProgressCallback, TranslationFailed, TranslationStats

logger = logging.getLogger(__name__)

ESTIMATORS = ("tiktoken", "chars")

_ESCAPES = {"\\n": "\n", "\\t": "\t", "\\r": "\r"}


@dataclass
class Settings:
    inputs: List[Path]
    output: Optional[Path]
    output_dir: Optional[Path]
    target_lang: str
    splitter: str
    model: str
    estimator: str
    dry_run: bool
    debug: bool
    translator: Optional[TranslatorConfig]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Translate documents chunk by chunk with an OpenAI-compatible chat model"
    )
    parser.add_argument("inputs", nargs="+", help="Files to translate")
    parser.add_argument("--target-lang", help="Target language name, e.g. Japanese", default=None)
    parser.add_argument("--output", help="Output file (single input only)", default=None)
    parser.add_argument("--output-dir", help="Directory receiving translated files", default=None)
    parser.add_argument(
        "--splitter",
        help="Delimiter used to split and rejoin the document (default: blank line)",
        default=None,
    )
    parser.add_argument("--model", help="Model identifier", default=None)
    parser.add_argument("--base-url", help="Base URL of the completion API", default=None)
    parser.add_argument(
        "--prompt",
        help="Prompt template; {targetLanguage} and {targetFileExt} are substituted",
        default=None,
    )
    parser.add_argument("--api-key", help="API key (defaults to OPENAI_API_KEY)", default=None)
    parser.add_argument("--config", help="Path to a configuration file", default=None)
    parser.add_argument("--env-file", help="Path to a .env file", default=None)
    parser.add_argument("--timeout", type=float, help="Request timeout in seconds", default=None)
    parser.add_argument(
        "--stream",
        action=argparse.BooleanOptionalAction,
        help="Request a streamed completion",
        default=None,
    )
    parser.add_argument(
        "--estimator",
        choices=ESTIMATORS,
        help="Token estimator used for chunk planning",
        default=None,
    )
    parser.add_argument("--dry-run", action="store_true", help="Show the chunk plan without translating")
    parser.add_argument("--debug", action="store_true", help="Log request and chunk details")
    return parser


def decode_splitter(value: str) -> str:
    for escaped, raw in _ESCAPES.items():
        value = value.replace(escaped, raw)
    return value


def parse_arguments(argv: Optional[List[str]] = None) -> Settings:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_env_file(args.env_file)

    try:
        config_data = load_config(args.config)
    except ConfigError as exc:
        parser.error(str(exc))

    cli_overrides: Dict[str, object] = {}
    for key, value in vars(args).items():
        if key in {"config", "env_file", "inputs"}:
            continue
        if value is None or value is False:
            continue
        cli_overrides[key] = value
    if args.stream is False:
        cli_overrides["stream"] = False
    merged = merge_config(merge_config(config_data, env_config()), cli_overrides)

    target_lang = merged.get("target_lang") or merged.get("target-lang")
    if not target_lang:
        parser.error("--target-lang is required")

    inputs = [Path(item).expanduser() for item in args.inputs]
    output = Path(args.output).expanduser() if args.output else None
    if output is not None and len(inputs) > 1:
        parser.error("--output can only be used with a single input file")
    output_dir_value = merged.get("output_dir") or merged.get("output-dir")
    output_dir = Path(str(output_dir_value)).expanduser() if output_dir_value else None

    splitter = decode_splitter(str(merged.get("splitter") or DEFAULT_SPLITTER))
    if not splitter:
        parser.error("--splitter must not be empty")

    estimator = str(merged.get("estimator") or "tiktoken")
    if estimator not in ESTIMATORS:
        parser.error(f"Unknown estimator '{estimator}' (choose from {', '.join(ESTIMATORS)})")

    dry_run = bool(merged.get("dry_run") or merged.get("dry-run"))
    translator_config: Optional[TranslatorConfig] = None
    if not dry_run:
        try:
            translator_config = TranslatorConfig.from_mapping(merged)
        except ConfigError as exc:
            parser.error(str(exc))

    return Settings(
        inputs=inputs,
        output=output,
        output_dir=output_dir,
        target_lang=str(target_lang),
        splitter=splitter,
        model=translator_config.model if translator_config else str(merged.get("model") or DEFAULT_MODEL),
        estimator=estimator,
        dry_run=dry_run,
        debug=bool(merged.get("debug")),
        translator=translator_config,
    )


def build_planner(settings: Settings) -> ChunkPlanner:
    if settings.estimator == "chars":
        return ChunkPlanner(token_budget(settings.model), approximate_tokens)
    return ChunkPlanner(token_budget(settings.model), TiktokenEstimator(settings.model))


def run(settings: Settings) -> int:
    configure_logging(settings.debug)
    start = time.time()
    planner = build_planner(settings)

    errors: List[str] = []
    jobs: List[tuple[Path, Path]] = []
    total_chunks = 0
    for source in settings.inputs:
        if not is_supported(source):
            errors.append(f"{source}: unsupported file extension")
            continue
        try:
            text = read_text(source)
        except FileReadError as exc:
            errors.append(str(exc))
            continue
        chunks = planner.plan(split_segments(text, settings.splitter), settings.splitter)
        total_chunks += len(chunks)
        if settings.dry_run:
            print(f"[DRY RUN] {source} -> {len(chunks)} chunks (budget {planner.budget} tokens)")
            for idx, chunk in enumerate(chunks, start=1):
                tokens = planner.estimate(chunk)
                marker = "  exceeds budget" if tokens > planner.budget else ""
                print(f"  chunk {idx}: ~{tokens} tokens{marker}")
            continue
        jobs.append((source, _resolve_output_path(settings, source)))

    if settings.dry_run:
        print(f"Total files: {len(settings.inputs) - len(errors)}, chunks: {total_chunks}")
        return _report_errors(errors)

    config = settings.translator
    if config is None:
        raise ConfigError("Translation requires an API configuration")

    conflicts = _destination_conflicts(jobs)
    if conflicts:
        return _report_errors(errors + conflicts)

    progress = chunk_progress(total=total_chunks)
    try:
        stats, files, failed = asyncio.run(
            _translate_jobs(settings, config, planner, jobs, errors, progress.update)
        )
    finally:
        progress.close()

    duration = time.time() - start
    print()
    print("Summary")
    print("=======")
    print(f"Files translated: {files}")
    print(f"Chunks translated: {stats.chunks}")
    print(f"API calls: {stats.api_calls}")
    if stats.empty_results:
        print(f"Empty results: {stats.empty_results}")
    print(f"Elapsed time: {duration:.2f}s")

    if failed:
        return 1
    return _report_errors(errors)


async def _translate_jobs(
    settings: Settings,
    config: TranslatorConfig,
    planner: ChunkPlanner,
    jobs: List[tuple[Path, Path]],
    errors: List[str],
    on_progress: ProgressCallback,
) -> tuple[TranslationStats, int, bool]:
    """Translate ``jobs`` in order; stop at the first failed request."""

    translated_files = 0
    async with ChatCompletionClient(config) as client:
        translator = ChunkTranslator(
            client,
            model=config.model,
            prompt_template=config.prompt,
            planner=planner,
            progress_callback=on_progress,
        )
        for source, destination in jobs:
            try:
                await translator.translate_file(
                    source,
                    settings.target_lang,
                    destination=destination,
                    splitter=settings.splitter,
                )
            except TranslationFailed as exc:
                logger.error("%s: %s", source, exc)
                for hint in exc.hints:
                    logger.warning(hint)
                return translator.stats, translated_files, True
            except (FileReadError, OSError) as exc:
                errors.append(f"{source}: {exc}")
                continue
            translated_files += 1
    return translator.stats, translated_files, False


def _report_errors(errors: List[str]) -> int:
    if not errors:
        return 0
    print()
    print("Failures:")
    for item in errors:
        print(f" - {item}")
    return 1


def _destination_conflicts(jobs: List[tuple[Path, Path]]) -> List[str]:
    """Destinations that would overwrite a source or another translation."""

    conflicts: List[str] = []
    sources = {source.resolve() for source, _ in jobs}
    seen: Dict[Path, Path] = {}
    for source, destination in jobs:
        resolved = destination.resolve()
        if resolved in sources:
            conflicts.append(f"{source}: destination {destination} would overwrite an input file")
        elif resolved in seen:
            conflicts.append(f"{source}: destination {destination} is also used for {seen[resolved]}")
        else:
            seen[resolved] = source
    return conflicts


def _resolve_output_path(settings: Settings, source: Path) -> Path:
    if settings.output is not None:
        return settings.output
    if settings.output_dir is not None:
        return settings.output_dir / default_output_path(source, settings.target_lang).name
    return default_output_path(source, settings.target_lang)


def main(argv: Optional[List[str]] = None) -> int:
    settings = parse_arguments(argv)
    return run(settings)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
