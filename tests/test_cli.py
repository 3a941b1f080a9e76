import pytest

from gpt_translate.cli import Settings, decode_splitter, main, parse_arguments, run
from gpt_translate.client import MODEL_ACCESS_HINT, OVERSIZED_CHUNK_HINT, RemoteCallError
from gpt_translate.config import ConfigError


class StubClient:
    instances: list["StubClient"] = []
    fail_with: RemoteCallError | None = None

    def __init__(self, config, **_: object) -> None:
        self.config = config
        self.calls: list[tuple[str, str]] = []
        self.closed = False
        StubClient.instances.append(self)

    async def __aenter__(self) -> "StubClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        self.closed = True

    async def complete(self, system_prompt: str, user_text: str) -> str:
        self.calls.append((system_prompt, user_text))
        if StubClient.fail_with is not None:
            raise StubClient.fail_with
        return f"[T]{user_text}"


@pytest.fixture
def stub_client(monkeypatch):
    StubClient.instances.clear()
    StubClient.fail_with = None
    monkeypatch.setattr("gpt_translate.cli.ChatCompletionClient", StubClient)
    return StubClient


def test_translates_file_to_default_destination(clean_env, stub_client, tmp_path, capsys):
    source = tmp_path / "doc.md"
    source.write_text("First.\n\nSecond.", encoding="utf-8")

    exit_code = main(
        [str(source), "--target-lang", "French", "--api-key", "key", "--estimator", "chars"]
    )

    assert exit_code == 0
    output = tmp_path / "doc.french.md"
    assert output.read_text(encoding="utf-8") == "[T]First.\n\nSecond."
    client = stub_client.instances[0]
    assert client.closed
    assert client.config.model == "gpt-3.5-turbo-16k"
    assert client.calls[0][0] == "Please translate the given text into naturalistic French."
    assert "Chunks translated: 1" in capsys.readouterr().out


def test_output_dir_and_custom_splitter(clean_env, stub_client, tmp_path):
    first = tmp_path / "a.txt"
    second = tmp_path / "b.txt"
    first.write_text("one\ntwo", encoding="utf-8")
    second.write_text("three", encoding="utf-8")
    out_dir = tmp_path / "translated"

    exit_code = main(
        [
            str(first),
            str(second),
            "--target-lang",
            "German",
            "--output-dir",
            str(out_dir),
            "--splitter",
            "\\n",
            "--api-key",
            "key",
            "--estimator",
            "chars",
        ]
    )

    assert exit_code == 0
    assert (out_dir / "a.german.txt").read_text(encoding="utf-8") == "[T]one\ntwo"
    assert (out_dir / "b.german.txt").read_text(encoding="utf-8") == "[T]three"


def test_remote_failure_exits_non_zero_with_hints(clean_env, stub_client, tmp_path, capsys):
    source = tmp_path / "doc.md"
    source.write_text("Hello", encoding="utf-8")
    output = tmp_path / "out.md"
    stub_client.fail_with = RemoteCallError("status 400", status_code=400)

    exit_code = main(
        [
            str(source),
            "--target-lang",
            "French",
            "--output",
            str(output),
            "--api-key",
            "key",
            "--estimator",
            "chars",
        ]
    )

    assert exit_code == 1
    assert not output.exists()
    err = capsys.readouterr().err
    assert "Translation of chunk 1 failed" in err
    assert err.index(OVERSIZED_CHUNK_HINT) < err.index(MODEL_ACCESS_HINT)


def test_unsupported_file_is_reported(clean_env, stub_client, tmp_path, capsys):
    source = tmp_path / "image.png"
    source.write_bytes(b"\x89PNG")

    exit_code = main([str(source), "--target-lang", "French", "--api-key", "key", "--estimator", "chars"])

    assert exit_code == 1
    assert "unsupported file extension" in capsys.readouterr().out


def test_missing_api_key_is_a_usage_error(clean_env, tmp_path):
    source = tmp_path / "doc.md"
    source.write_text("Hello", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        parse_arguments([str(source), "--target-lang", "French"])

    assert excinfo.value.code == 2


def test_output_requires_single_input(clean_env, tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        parse_arguments(["a.md", "b.md", "--target-lang", "French", "--output", "x.md", "--api-key", "k"])
    assert excinfo.value.code == 2


def test_dry_run_needs_no_credentials(clean_env, stub_client, tmp_path, capsys):
    source = tmp_path / "doc.md"
    source.write_text("aaaa\n\nbbbb", encoding="utf-8")

    exit_code = main([str(source), "--target-lang", "French", "--dry-run", "--estimator", "chars"])

    assert exit_code == 0
    assert stub_client.instances == []
    out = capsys.readouterr().out
    assert "-> 1 chunks (budget 8192 tokens)" in out
    assert "chunk 1: ~3 tokens" in out


def test_settings_precedence(clean_env, tmp_path, monkeypatch):
    (tmp_path / "gpt-translate.config.yaml").write_text(
        "model: gpt-4-32k\nprompt: 'Into {targetLanguage}'\ntarget_lang: Korean\nstream: false\n",
        encoding="utf-8",
    )
    (tmp_path / ".env").write_text("OPENAI_API_KEY=from-dotenv\nGPT_TRANSLATE_MODEL=gpt-4\n", encoding="utf-8")

    settings = parse_arguments(["doc.md", "--model", "gpt-3.5-turbo"])

    assert settings.target_lang == "Korean"
    assert settings.model == "gpt-3.5-turbo"
    assert settings.translator is not None
    assert settings.translator.api_key == "from-dotenv"
    assert settings.translator.prompt == "Into {targetLanguage}"
    assert settings.translator.stream is False
    assert settings.splitter == "\n\n"


def test_decode_splitter():
    assert decode_splitter("\\n\\n") == "\n\n"
    assert decode_splitter("---") == "---"


def test_configure_logging_adds_handler_once():
    import logging

    from gpt_translate.log import TqdmLoggingHandler, configure_logging

    logger = configure_logging(debug=True)
    configure_logging(debug=False)

    handlers = [h for h in logger.handlers if isinstance(h, TqdmLoggingHandler)]
    assert len(handlers) == 1
    assert logger.level == logging.INFO


def test_remote_failure_stops_remaining_files(clean_env, stub_client, tmp_path, capsys):
    first = tmp_path / "a.md"
    second = tmp_path / "b.md"
    first.write_text("Hello", encoding="utf-8")
    second.write_text("World", encoding="utf-8")
    out_dir = tmp_path / "out"
    stub_client.fail_with = RemoteCallError("Completion endpoint returned invalid JSON")

    exit_code = main(
        [
            str(first),
            str(second),
            "--target-lang",
            "French",
            "--output-dir",
            str(out_dir),
            "--api-key",
            "key",
            "--estimator",
            "chars",
        ]
    )

    assert exit_code == 1
    assert len(stub_client.instances[0].calls) == 1
    assert not (out_dir / "a.french.md").exists()
    assert not (out_dir / "b.french.md").exists()
    captured = capsys.readouterr()
    assert "Failures:" not in captured.out
    assert OVERSIZED_CHUNK_HINT in captured.err


def test_colliding_destinations_are_rejected(clean_env, stub_client, tmp_path, capsys):
    (tmp_path / "en").mkdir()
    (tmp_path / "de").mkdir()
    first = tmp_path / "en" / "doc.md"
    second = tmp_path / "de" / "doc.md"
    first.write_text("Hello", encoding="utf-8")
    second.write_text("Hallo", encoding="utf-8")

    exit_code = main(
        [
            str(first),
            str(second),
            "--target-lang",
            "French",
            "--output-dir",
            str(tmp_path / "out"),
            "--api-key",
            "key",
            "--estimator",
            "chars",
        ]
    )

    assert exit_code == 1
    assert stub_client.instances == []
    assert "is also used for" in capsys.readouterr().out


def test_output_onto_source_is_rejected(clean_env, stub_client, tmp_path, capsys):
    source = tmp_path / "doc.md"
    source.write_text("Hello", encoding="utf-8")

    exit_code = main(
        [str(source), "--target-lang", "French", "--output", str(source), "--api-key", "key", "--estimator", "chars"]
    )

    assert exit_code == 1
    assert stub_client.instances == []
    assert source.read_text(encoding="utf-8") == "Hello"
    assert "would overwrite an input file" in capsys.readouterr().out


def test_run_without_api_configuration_raises(clean_env, stub_client, tmp_path):
    source = tmp_path / "doc.md"
    source.write_text("Hello", encoding="utf-8")
    settings = Settings(
        inputs=[source],
        output=None,
        output_dir=None,
        target_lang="French",
        splitter="\n\n",
        model="gpt-3.5-turbo-16k",
        estimator="chars",
        dry_run=False,
        debug=False,
        translator=None,
    )

    with pytest.raises(ConfigError):
        run(settings)
    assert stub_client.instances == []
