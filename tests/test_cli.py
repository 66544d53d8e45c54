"""Tests for CLI commands"""

from unittest.mock import Mock, patch

import httpx
import pytest
from typer.testing import CliRunner

from seo_cli.client.base import EngineAPIError
from seo_cli.client.endpoints import EngineClient
from seo_cli.main import app
from seo_cli.utils.config_manager import ConfigManager


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture
def mock_client():
    """Mock engine client usable as a context manager"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    return client


class TestMainCommands:
    """Test main CLI commands"""

    def test_version(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "SEO Engine CLI v1.0.0" in result.stdout

    @patch("seo_cli.main.EngineClient")
    def test_status_success(self, mock_client_class, runner, mock_client):
        """Test status command with successful connection"""
        mock_client.health_check.return_value = {
            "version": "1.0.0",
            "environment": "development",
            "queue_backend": "memory",
            "queues_healthy": True,
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout

    @patch("seo_cli.main.EngineClient")
    def test_status_failure(self, mock_client_class, runner, mock_client):
        """Test status command with connection failure"""
        mock_client.health_check.side_effect = EngineAPIError("Connection failed")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestQueueCommands:
    """Test queue commands"""

    @patch("seo_cli.commands.queues.EngineClient")
    def test_health_healthy(self, mock_client_class, runner, mock_client):
        mock_client.queue_health.return_value = {
            "healthy": True,
            "queues": [
                {
                    "name": "publish",
                    "waiting": 2,
                    "active": 0,
                    "completed": 5,
                    "failed": 0,
                    "delayed": 1,
                    "is_paused": False,
                }
            ],
            "workers": [],
            "issues": [],
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queues", "health"])
        assert result.exit_code == 0
        assert "All queues healthy" in result.stdout

    @patch("seo_cli.commands.queues.EngineClient")
    def test_health_unhealthy_exits_2(self, mock_client_class, runner, mock_client):
        mock_client.queue_health.return_value = {
            "healthy": False,
            "queues": [],
            "workers": [],
            "issues": ["queue build is paused unexpectedly"],
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queues", "health"])
        assert result.exit_code == 2
        assert "paused unexpectedly" in result.stdout

    @patch("seo_cli.commands.queues.EngineClient")
    def test_metrics(self, mock_client_class, runner, mock_client):
        mock_client.queue_metrics.return_value = {
            "total_waiting": 3,
            "total_active": 1,
            "total_completed": 10,
            "total_failed": 0,
            "total_delayed": 2,
            "paused_queues": 0,
            "running_workers": 7,
            "processed_jobs": 11,
            "failed_jobs": 0,
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queues", "metrics"])
        assert result.exit_code == 0

    @patch("seo_cli.commands.queues.EngineClient")
    def test_pause(self, mock_client_class, runner, mock_client):
        mock_client.pause_queue.return_value = {"queue": "publish", "is_paused": True}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queues", "pause", "publish"])
        assert result.exit_code == 0
        assert "Queue publish paused" in result.stdout
        mock_client.pause_queue.assert_called_once_with("publish")

    @patch("seo_cli.commands.queues.EngineClient")
    def test_pause_unknown_queue(self, mock_client_class, runner, mock_client):
        mock_client.pause_queue.side_effect = EngineAPIError(
            "API Error 404: Queue not found: reports", 404
        )
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queues", "pause", "reports"])
        assert result.exit_code == 1


class TestPipelineCommands:
    """Test pipeline commands"""

    @patch("seo_cli.commands.pipeline.EngineClient")
    def test_start(self, mock_client_class, runner, mock_client):
        mock_client.start_pipeline.return_value = {"project_id": "p1", "job_id": "job-123"}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["pipeline", "start", "p1"])
        assert result.exit_code == 0
        assert "job-123" in result.stdout
        mock_client.start_pipeline.assert_called_once_with("p1")

    @patch("seo_cli.commands.pipeline.EngineClient")
    def test_resume_reports_status(self, mock_client_class, runner, mock_client):
        mock_client.resume_project.return_value = {"project_id": "p1", "status": "live"}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["pipeline", "resume", "p1"])
        assert result.exit_code == 0
        assert "live" in result.stdout

    @patch("seo_cli.commands.pipeline.EngineClient")
    def test_optimize(self, mock_client_class, runner, mock_client):
        mock_client.optimize_page.return_value = {"job_id": "job-9"}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["pipeline", "optimize", "p1", "page-1"])
        assert result.exit_code == 0
        mock_client.optimize_page.assert_called_once_with("p1", "page-1")


class TestConfigCommands:
    """Test configuration commands"""

    @pytest.fixture
    def config_manager(self, tmp_path):
        manager = ConfigManager(tmp_path)
        with patch("seo_cli.commands.config.config", manager):
            yield manager

    def test_set_and_show(self, runner, config_manager):
        result = runner.invoke(app, ["config", "set", "api.base_url", "http://engine:9000"])
        assert result.exit_code == 0
        assert config_manager.get("api.base_url") == "http://engine:9000"

        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "http://engine:9000" in result.stdout

    def test_set_invalid_url(self, runner, config_manager):
        result = runner.invoke(app, ["config", "set", "api.base_url", "engine:9000"])
        assert result.exit_code == 1
        assert not config_manager.config_file.exists()

    def test_set_invalid_timeout(self, runner, config_manager):
        result = runner.invoke(app, ["config", "set", "api.timeout", "soon"])
        assert result.exit_code == 1


class TestEngineClient:
    """Test envelope handling against a mocked transport"""

    def make_client(self, handler) -> EngineClient:
        return EngineClient("http://engine.test", transport=httpx.MockTransport(handler))

    def test_unwraps_success_envelope(self):
        def handler(request):
            assert request.url.path == "/v1/queues/metrics"
            return httpx.Response(200, json={"ok": True, "data": {"total_waiting": 4}})

        with self.make_client(handler) as client:
            assert client.queue_metrics() == {"total_waiting": 4}

    def test_error_envelope_raises(self):
        def handler(request):
            return httpx.Response(
                404,
                json={"ok": False, "error": {"message": "Queue not found: reports"}},
            )

        with self.make_client(handler) as client:
            with pytest.raises(EngineAPIError) as exc_info:
                client.pause_queue("reports")

        assert exc_info.value.status_code == 404
        assert "Queue not found" in str(exc_info.value)

    def test_connection_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.make_client(handler) as client:
            with pytest.raises(EngineAPIError, match="Connection failed"):
                client.health_check()
