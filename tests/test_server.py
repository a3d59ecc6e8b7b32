"""Tests for server.py and async_server.py."""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

SERVER_MODULES = ("chuk_mcp_tilemachine.server", "chuk_mcp_tilemachine.async_server")


@pytest.fixture
def clean_server_import():
    """
    Remove cached server modules so each test re-imports them with fresh mocks.
    """
    saved = {k: sys.modules.pop(k) for k in list(sys.modules) if k.startswith(SERVER_MODULES)}
    yield
    for k in list(sys.modules.keys()):
        if k.startswith(SERVER_MODULES):
            sys.modules.pop(k, None)
    sys.modules.update(saved)


@contextmanager
def patched_store(env, store_cls=None, set_global=None):
    """Patch the artifact store class and global setter under a clean environment."""
    store_cls = store_cls or MagicMock(name="ArtifactStore")
    set_global = set_global or MagicMock(name="set_global_artifact_store")
    with patch.dict(os.environ, env, clear=True):
        with (
            patch("chuk_artifacts.ArtifactStore", store_cls),
            patch("chuk_mcp_server.set_global_artifact_store", set_global),
        ):
            yield store_cls, set_global


# =====================================================================
# _init_artifact_store
# =====================================================================


class TestInitArtifactStoreMemory:
    def test_default_memory_provider(self, clean_server_import):
        with patched_store({}) as (store_cls, set_global):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            result = _init_artifact_store()

        assert result is True
        store_cls.assert_called_once_with(storage_provider="memory", session_provider="memory")
        set_global.assert_called_once_with(store_cls.return_value)

    def test_redis_session(self, clean_server_import):
        with patched_store({"REDIS_URL": "redis://cache:6379"}) as (store_cls, _):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            assert _init_artifact_store() is True

        store_cls.assert_called_once_with(storage_provider="memory", session_provider="redis")

    def test_unknown_provider_passed_through(self, clean_server_import):
        with patched_store({"CHUK_ARTIFACTS_PROVIDER": "custom"}) as (store_cls, _):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            assert _init_artifact_store() is True

        store_cls.assert_called_once_with(storage_provider="custom", session_provider="memory")


class TestInitArtifactStoreS3:
    S3_ENV = {
        "CHUK_ARTIFACTS_PROVIDER": "s3",
        "BUCKET_NAME": "tiles-bucket",
        "AWS_ACCESS_KEY_ID": "AKID",
        "AWS_SECRET_ACCESS_KEY": "SECRET",
    }

    def test_s3_provider(self, clean_server_import):
        with patched_store(self.S3_ENV) as (store_cls, set_global):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            assert _init_artifact_store() is True

        store_cls.assert_called_once_with(
            storage_provider="s3", session_provider="memory", bucket="tiles-bucket"
        )
        set_global.assert_called_once()

    def test_s3_with_redis(self, clean_server_import):
        env = {**self.S3_ENV, "REDIS_URL": "redis://localhost:6379"}
        with patched_store(env) as (store_cls, _):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            assert _init_artifact_store() is True

        store_cls.assert_called_once_with(
            storage_provider="s3", session_provider="redis", bucket="tiles-bucket"
        )

    @pytest.mark.parametrize("missing", ["BUCKET_NAME", "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"])
    def test_s3_missing_settings(self, clean_server_import, missing):
        env = {k: v for k, v in self.S3_ENV.items() if k != missing}
        with patched_store(env) as (store_cls, set_global):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            assert _init_artifact_store() is False

        store_cls.assert_not_called()
        set_global.assert_not_called()


class TestInitArtifactStoreFilesystem:
    def test_filesystem_with_path(self, clean_server_import, tmp_path):
        artifacts_dir = str(tmp_path / "a" / "b" / "artifacts")
        env = {"CHUK_ARTIFACTS_PROVIDER": "filesystem", "CHUK_ARTIFACTS_PATH": artifacts_dir}
        with patched_store(env) as (store_cls, _):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            assert _init_artifact_store() is True

        assert Path(artifacts_dir).is_dir()
        store_cls.assert_called_once_with(
            storage_provider="filesystem", session_provider="memory", bucket=artifacts_dir
        )

    def test_filesystem_without_path_falls_back_to_memory(self, clean_server_import):
        with patched_store({"CHUK_ARTIFACTS_PROVIDER": "filesystem"}) as (store_cls, _):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            assert _init_artifact_store() is True

        store_cls.assert_called_once_with(storage_provider="memory", session_provider="memory")


class TestInitArtifactStoreErrors:
    def test_constructor_raises(self, clean_server_import):
        store_cls = MagicMock(side_effect=RuntimeError("connection refused"))
        with patched_store({}, store_cls=store_cls) as (_, set_global):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            assert _init_artifact_store() is False

        set_global.assert_not_called()

    def test_set_global_raises(self, clean_server_import):
        set_global = MagicMock(side_effect=RuntimeError("global store error"))
        with patched_store({}, set_global=set_global):
            from chuk_mcp_tilemachine.server import _init_artifact_store

            assert _init_artifact_store() is False


# =====================================================================
# main()
# =====================================================================


def run_main(argv, env=None, isatty=True):
    """Import server with mocks, swap in a mock mcp, run main(); returns (server, mcp)."""
    mock_mcp = MagicMock(name="mcp")
    with patched_store(env or {}):
        from chuk_mcp_tilemachine import server
        from chuk_mcp_tilemachine.core.tile_manager import TileManager

        server.mcp = mock_mcp
        server.manager = TileManager(max_workers=1)
        with patch("sys.argv", ["server", *argv]), patch("sys.stdin") as mock_stdin:
            mock_stdin.isatty.return_value = isatty
            server.main()
    return server, mock_mcp


class TestMain:
    def test_stdio_mode(self, clean_server_import):
        _, mcp = run_main(["stdio"])
        mcp.run.assert_called_once_with(stdio=True)

    def test_http_mode(self, clean_server_import):
        _, mcp = run_main(["http", "--host", "0.0.0.0", "--port", "9000"])
        mcp.run.assert_called_once_with(host="0.0.0.0", port=9000, stdio=False)

    def test_http_defaults(self, clean_server_import):
        _, mcp = run_main(["http"])
        mcp.run.assert_called_once_with(host="localhost", port=8004, stdio=False)

    def test_auto_detect_stdio_from_env(self, clean_server_import):
        _, mcp = run_main([], env={"MCP_STDIO": "1"})
        mcp.run.assert_called_once_with(stdio=True)

    def test_auto_detect_stdio_when_not_tty(self, clean_server_import):
        _, mcp = run_main([], isatty=False)
        mcp.run.assert_called_once_with(stdio=True)

    def test_auto_detect_http_when_tty(self, clean_server_import):
        _, mcp = run_main(["--port", "7777"], isatty=True)
        mcp.run.assert_called_once_with(host="localhost", port=7777, stdio=False)

    def test_render_options_override_manager(self, clean_server_import):
        server, _ = run_main(["stdio", "--raster-root", "/srv/rasters", "--max-workers", "8"])
        assert server.manager.raster_root == "/srv/rasters"
        assert server.manager.max_workers == 8

    def test_non_positive_workers_ignored(self, clean_server_import):
        server, _ = run_main(["stdio", "--max-workers", "0"])
        assert server.manager.max_workers == 1

    def test_main_initialises_store(self, clean_server_import):
        with patched_store({}):
            from chuk_mcp_tilemachine import server

            server.mcp = MagicMock()
            with (
                patch.object(server, "_init_artifact_store") as mock_init,
                patch("sys.argv", ["server", "stdio"]),
            ):
                server.main()

            mock_init.assert_called_once()


# =====================================================================
# async_server.py
# =====================================================================


class TestAsyncServer:
    def test_mcp_is_chuk_mcp_server_instance(self):
        from chuk_mcp_server import ChukMCPServer
        from chuk_mcp_tilemachine.async_server import mcp

        assert isinstance(mcp, ChukMCPServer)

    def test_mcp_name(self):
        from chuk_mcp_tilemachine.async_server import mcp

        assert mcp.server_info.name == "chuk-mcp-tilemachine"

    def test_manager_is_tile_manager(self):
        from chuk_mcp_tilemachine.async_server import manager
        from chuk_mcp_tilemachine.core.tile_manager import TileManager

        assert isinstance(manager, TileManager)

    def test_server_reexports_async_server_objects(self):
        from chuk_mcp_tilemachine.async_server import manager, mcp
        from chuk_mcp_tilemachine.server import manager as server_manager
        from chuk_mcp_tilemachine.server import mcp as server_mcp

        assert server_mcp is mcp
        assert server_manager is manager
