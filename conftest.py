from __future__ import annotations

import asyncio
import inspect
import os
from typing import Callable, Iterator, List, Optional

import pytest

from gpt_translate.client import RemoteCallError
from gpt_translate.config import ENV_KEYS


def pytest_configure(config: pytest.Config) -> None:  # pragma: no cover - pytest integration
    config.addinivalue_line("markers", "asyncio: run the marked test as an asyncio coroutine")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:  # pragma: no cover - pytest integration
    test_obj = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_obj):
        return None
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None

    funcargs = {
        name: pyfuncitem.funcargs[name]
        for name in pyfuncitem._fixtureinfo.argnames  # type: ignore[attr-defined]
        if name in pyfuncitem.funcargs
    }
    asyncio.run(test_obj(**funcargs))
    return True


class RecordingBackend:
    """Completion stub that records every request it receives."""

    def __init__(
        self,
        reply: Optional[Callable[[str], str]] = None,
        *,
        fail_on: Optional[int] = None,
        status_code: Optional[int] = 400,
    ) -> None:
        self.reply = reply or (lambda text: f"<{text}>")
        self.fail_on = fail_on
        self.status_code = status_code
        self.calls: List[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_text: str) -> str:
        self.calls.append((system_prompt, user_text))
        if self.fail_on is not None and len(self.calls) - 1 == self.fail_on:
            raise RemoteCallError("endpoint rejected the request", status_code=self.status_code)
        return self.reply(user_text)

    @property
    def texts(self) -> List[str]:
        return [text for _, text in self.calls]


@pytest.fixture
def backend_factory() -> Callable[..., RecordingBackend]:
    return RecordingBackend


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    """Run in an empty directory without any credentials in the environment."""

    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    for key in ENV_KEYS:
        os.environ.pop(key, None)
