from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path

AVAILABLE_FILE_EXTENSIONS: frozenset[str] = frozenset(
    {"md", "markdown", "mdx", "txt", "json", "yaml", "yml", "po", "html", "xml", "ts", "js", "csv"}
)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


class FileReadError(RuntimeError):
    pass


def file_extension(path: Path) -> str:
    return path.suffix.lower().lstrip(".")


def is_supported(path: Path) -> bool:
    return file_extension(path) in AVAILABLE_FILE_EXTENSIONS


def language_slug(language: str) -> str:
    slug = _SLUG_RE.sub("-", language.strip().lower()).strip("-")
    return slug or "translated"


def default_output_path(source: Path, target_language: str) -> Path:
    """``docs/guide.md`` translated to Japanese becomes ``docs/guide.japanese.md``."""

    return source.with_name(f"{source.stem}.{language_slug(target_language)}{source.suffix}")


def read_text(path: Path) -> str:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise FileReadError(f"Failed to read {path}: {exc}") from exc
    if b"\0" in data:
        raise FileReadError(f"{path} appears to be a binary file")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FileReadError(f"{path} is not valid UTF-8: {exc}") from exc


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def atomic_write(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    ensure_parent(path)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=path.name, dir=path.parent)
    try:
        with os.fdopen(tmp_fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
