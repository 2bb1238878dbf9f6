import pytest

from chatloom.__main__ import main
from chatloom.app import ChatloomApp
from chatloom.config import AppConfig, ProviderConfig, StorageConfig
from chatloom.errors import ProviderNotFoundError
from tests.unit.fakes import FakeResponse, FakeTransport, sse


def _config(tmp_path, **overrides) -> AppConfig:
    settings = {
        "system_prompt": "sys",
        "provider": ProviderConfig(provider="openai", model="m", api_key="k"),
        "storage": StorageConfig(db_path=str(tmp_path / "chatloom.db")),
    }
    settings.update(overrides)
    return AppConfig(**settings)


def _reply(text: str) -> FakeResponse:
    return FakeResponse(chunks=[sse({"choices": [{"delta": {"content": text}, "finish_reason": "stop"}]}, "[DONE]")])


@pytest.mark.asyncio
async def test_app_persists_and_restores_recent_session(tmp_path):
    first = ChatloomApp(_config(tmp_path), transport=FakeTransport(_reply("hello")))
    await first.start()
    await first.orchestrator.send_turn("hi")
    session_id = first.orchestrator.session_id
    await first.stop()

    second = ChatloomApp(_config(tmp_path), transport=FakeTransport())
    await second.start()
    try:
        assert second.orchestrator.session_id == session_id
        assert [m.content for m in second.orchestrator.history()] == ["hi", "hello"]
        sessions = await second.store.list_sessions()
        assert [s.id for s in sessions] == [session_id]
    finally:
        await second.stop()


@pytest.mark.asyncio
async def test_app_start_without_restore(tmp_path):
    first = ChatloomApp(_config(tmp_path), transport=FakeTransport(_reply("hello")))
    await first.start()
    await first.orchestrator.send_turn("hi")
    await first.stop()

    fresh = ChatloomApp(_config(tmp_path), transport=FakeTransport())
    await fresh.start(restore=False)
    try:
        assert fresh.orchestrator.history() == []
    finally:
        await fresh.stop()


@pytest.mark.asyncio
async def test_app_without_storage(tmp_path):
    transport = FakeTransport()
    app = ChatloomApp(_config(tmp_path, storage=StorageConfig(enabled=False)), transport=transport)

    await app.start()
    await app.stop()

    assert app.store is None
    assert transport.closed


@pytest.mark.asyncio
async def test_app_rejects_unknown_provider(tmp_path):
    app = ChatloomApp(_config(tmp_path, provider=ProviderConfig(provider="nope")), transport=FakeTransport())

    with pytest.raises(ProviderNotFoundError):
        await app.start()


def test_cli_providers_lists_vendors(tmp_path, capsys):
    main(["providers", "-c", str(tmp_path / "missing.yaml"), "-e", str(tmp_path / ".env")])

    out = capsys.readouterr().out
    for name in ("openai", "anthropic", "moonshot", "local"):
        assert name in out


def test_cli_config_check(tmp_path, capsys):
    config_file = tmp_path / "chatloom.yaml"
    config_file.write_text("provider:\n  provider: moonshot\n  model: moonshot-v1-8k\n", encoding="utf-8")

    main(["config-check", "-c", str(config_file), "-e", str(tmp_path / ".env")])

    out = capsys.readouterr().out
    assert "Configuration valid" in out
    assert "Moonshot" in out


def test_cli_config_check_unknown_provider(tmp_path, capsys):
    config_file = tmp_path / "chatloom.yaml"
    config_file.write_text("provider:\n  provider: gemini\n", encoding="utf-8")

    with pytest.raises(SystemExit):
        main(["config-check", "-c", str(config_file), "-e", str(tmp_path / ".env")])

    assert 'Provider "gemini" not found' in capsys.readouterr().err
