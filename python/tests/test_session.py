"""
Integration tests for Session wiring.
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from simpleton_cli import PerformanceMonitor, Session
from simpleton_cli.config import SimpletonConfig

from conftest import CHAT_URL, ENDPOINT, MODELS_URL, TEST_MODEL, make_completion


@pytest.fixture
def persistent_config(temp_dir: Path) -> SimpletonConfig:
    return SimpletonConfig(
        endpoint=ENDPOINT,
        model=TEST_MODEL,
        enable_persistent_cache=True,
        cache_dir=str(temp_dir / "cache"),
    )


class TestSession:
    """Tests for the session lifecycle."""

    @pytest.mark.asyncio
    async def test_collaborators_share_one_store(self, simpleton_config, sample_files):
        async with Session(simpleton_config) as session:
            await session.files.read_file(str(sample_files["index"]))
            await session.files.list_files(str(sample_files["project"]))

            assert session.files.content_cache.store is session.cache
            assert session.status.cache.store is session.cache
            assert len(session.cache) == 2

    @pytest.mark.asyncio
    async def test_client_uses_config(self, simpleton_config, mock_server):
        mock_server.post(CHAT_URL).mock(return_value=httpx.Response(200, json=make_completion("hi")))

        async with Session(simpleton_config) as session:
            response = await session.client.chat_completion([{"role": "user", "content": "hello"}])

            assert session.client.endpoint == ENDPOINT
            assert session.client.model == TEST_MODEL
            assert response.content == "hi"

    @pytest.mark.asyncio
    async def test_close_persists_shared_cache(self, persistent_config, sample_files):
        async with Session(persistent_config) as session:
            await session.files.list_files(str(sample_files["project"]))

        snapshot = json.loads(Path(persistent_config.snapshot_path).read_text())
        assert snapshot["version"] == 1
        assert len(snapshot["entries"]) == 1

    @pytest.mark.asyncio
    async def test_cache_restored_on_next_session(self, persistent_config, sample_files):
        project = str(sample_files["project"])
        async with Session(persistent_config) as session:
            await session.files.list_files(project)

        async with Session(persistent_config) as session:
            listing = await session.listing_cache.get(project)

        assert listing == ["README.md", "src/index.ts", "src/utils/helpers.js"]

    @pytest.mark.asyncio
    async def test_non_persistent_session_writes_nothing(self, simpleton_config, sample_files):
        async with Session(simpleton_config) as session:
            await session.files.list_files(str(sample_files["project"]))

        assert not Path(simpleton_config.snapshot_path).exists()

    @pytest.mark.asyncio
    async def test_unwritable_cache_dir_does_not_fail_close(self, temp_dir):
        blocker = temp_dir / "blocker"
        blocker.write_text("")
        config = SimpletonConfig(
            endpoint=ENDPOINT,
            model=TEST_MODEL,
            enable_persistent_cache=True,
            cache_dir=str(blocker / "cache"),
        )

        session = Session(config)
        await session.start()
        session.cache.set("key", "value")
        await session.close()

    @pytest.mark.asyncio
    async def test_status_check_through_session(self, simpleton_config, mock_server):
        mock_server.get(MODELS_URL).mock(
            return_value=httpx.Response(200, json={"data": [{"id": TEST_MODEL}]})
        )

        async with Session(simpleton_config) as session:
            status = await session.status.check()

        assert status.is_running is True
        assert status.current_model == TEST_MODEL

    @pytest.mark.asyncio
    async def test_client_reports_to_session_monitor(self, simpleton_config, mock_server):
        mock_server.post(CHAT_URL).mock(return_value=httpx.Response(200, json=make_completion()))
        monitor = PerformanceMonitor()

        async with Session(simpleton_config, monitor=monitor) as session:
            await session.client.chat_completion([{"role": "user", "content": "hello"}])

            assert session.monitor is monitor
            assert session.client.monitor is monitor

        assert [m.name for m in monitor.metrics] == ["chat_completion"]

    @pytest.mark.asyncio
    async def test_default_monitor_is_created(self, simpleton_config):
        async with Session(simpleton_config) as session:
            assert isinstance(session.monitor, PerformanceMonitor)
            assert session.client.monitor is session.monitor

    @pytest.mark.asyncio
    async def test_pool_closed_when_shutdown_step_fails(self, simpleton_config):
        session = Session(simpleton_config)
        await session.start()

        with patch.object(
            session.cache, "stop_cleanup_task", AsyncMock(side_effect=RuntimeError("sweep stuck"))
        ):
            with pytest.raises(RuntimeError, match="sweep stuck"):
                await session.close()

        assert session.client._http_client.is_closed
        await session.cache.stop_cleanup_task()

    @pytest.mark.asyncio
    async def test_pool_closed_when_snapshot_write_fails(self, persistent_config):
        session = Session(persistent_config)
        await session.start()

        with patch.object(session.cache, "save_snapshot", side_effect=OSError("disk full")):
            with pytest.raises(OSError, match="disk full"):
                await session.close()

        assert session.client._http_client.is_closed
