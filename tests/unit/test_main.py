"""
Unit tests for the command line interface.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from strava_relay.main import cli
from strava_relay.utils.error_handling import APIError, ConfigurationError


class TestCli:
    """Test CLI commands"""

    @pytest.fixture(autouse=True)
    def environment(self, app_config):
        self.config = app_config
        self.runner = CliRunner()
        with patch('strava_relay.main.setup_logging'), \
                patch('strava_relay.main.Config.from_env', return_value=app_config) as from_env:
            self.from_env = from_env
            yield

    def test_status(self):
        result = self.runner.invoke(cli, ['status'])

        assert result.exit_code == 0
        assert "Members: 1" in result.output
        assert "Test Athlete (athlete 12345, Discord 555000111)" in result.output
        assert "Delay: 15 minutes" in result.output
        assert "Budget: 80 calls per 15 minutes" in result.output
        assert "webhooks/1/test" not in result.output

    def test_env_file_passed_through(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("")

        self.runner.invoke(cli, ['--env-file', str(env_file), 'status'])

        self.from_env.assert_called_once_with(str(env_file))

    def test_configuration_error_exits(self):
        self.from_env.side_effect = ConfigurationError("STRAVA_CLIENT_ID is required")

        result = self.runner.invoke(cli, ['status'])

        assert result.exit_code == 1

    def test_sync_recent(self):
        pipeline = MagicMock()
        pipeline.process_recent_activities = AsyncMock(return_value=3)
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=pipeline)
        context.__aexit__ = AsyncMock(return_value=None)

        with patch('strava_relay.main.ActivityPipeline.from_config', return_value=context):
            result = self.runner.invoke(cli, ['sync-recent', '--hours', '6'])

        assert result.exit_code == 0
        assert "Posted 3 activities from the last 6 hours" in result.output
        pipeline.process_recent_activities.assert_awaited_once_with(hours_back=6.0)

    def test_sync_recent_failure(self):
        pipeline = MagicMock()
        pipeline.process_recent_activities = AsyncMock(side_effect=APIError("HTTP error 503"))
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=pipeline)
        context.__aexit__ = AsyncMock(return_value=None)

        with patch('strava_relay.main.ActivityPipeline.from_config', return_value=context):
            result = self.runner.invoke(cli, ['sync-recent'])

        assert result.exit_code == 1
        assert "Sync failed" in result.output

    def test_sync_recent_help_names_ledger_caveat(self):
        """Test the help warns about the separate dedup ledger and points at serve"""
        result = self.runner.invoke(cli, ['sync-recent', '--help'])

        help_text = " ".join(result.output.split())
        assert result.exit_code == 0
        assert "own empty dedup ledger" in help_text
        assert "serve --catch-up-hours" in help_text

    def test_serve_runs_catch_up(self):
        """Test serve starts the loop, schedules the catch-up and always stops"""
        with patch('strava_relay.main.ActivityPipeline.from_config'), \
                patch('strava_relay.main.PipelineRunner') as runner_class, \
                patch('strava_relay.main.StravaWebhookServer') as server_class:
            result = self.runner.invoke(cli, ['serve', '--port', '8080', '--catch-up-hours', '12'])

        runner = runner_class.return_value
        assert result.exit_code == 0
        runner.start.assert_called_once()
        runner.submit_recovery.assert_called_once_with(12.0)
        server_class.return_value.run.assert_called_once_with(host=None, port=8080)
        runner.stop.assert_called_once()
