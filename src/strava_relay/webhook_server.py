#!/usr/bin/env python3
"""
Webhook server for Strava push-subscription events.

Flask handles the HTTP side synchronously; the activity pipeline lives on a
dedicated asyncio event loop in a background thread, and validated events are
handed to it with ``asyncio.run_coroutine_threadsafe``.
"""

import asyncio
import concurrent.futures
import json
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from flask import Flask, request, jsonify

from .api.models import WebhookEvent
from .pipeline.service import ActivityPipeline
from .utils.config import Config
from .utils.logging_config import setup_logging, get_logger
from .utils.error_handling import ConfigurationError, ValidationError, handle_errors
from .utils.security import create_security_headers, SecurityValidator

logger = get_logger(__name__)


class PipelineRunner:
    """Runs an ActivityPipeline on its own event loop thread."""

    def __init__(self, pipeline: ActivityPipeline):
        self.pipeline = pipeline
        self.loop = asyncio.new_event_loop()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and self.loop.is_running()

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self, timeout: float = 10) -> None:
        """Start the loop thread and open the pipeline's HTTP sessions on it."""
        if self._thread is not None:
            return

        self._thread = threading.Thread(target=self._run_loop, name="activity-pipeline", daemon=True)
        self._thread.start()
        asyncio.run_coroutine_threadsafe(self.pipeline.start(), self.loop).result(timeout)
        logger.info("Pipeline event loop started")

    def submit_event(self, event: WebhookEvent) -> concurrent.futures.Future:
        """Schedule an event on the pipeline loop without waiting for it."""
        future = asyncio.run_coroutine_threadsafe(self.pipeline.on_webhook_event(event), self.loop)
        future.add_done_callback(self._log_failure)
        return future

    def submit_recovery(self, hours_back: float) -> concurrent.futures.Future:
        """Schedule a recent-activity sync on the pipeline loop."""
        logger.info(f"Processing recent activities from the last {hours_back:g} hours")
        future = asyncio.run_coroutine_threadsafe(self.pipeline.process_recent_activities(hours_back), self.loop)
        future.add_done_callback(self._log_failure)
        return future

    @staticmethod
    def _log_failure(future: concurrent.futures.Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Error in pipeline task: {error}")

    def call(self, func: Callable[[], Any], timeout: float = 5) -> Any:
        """Run a synchronous pipeline accessor on the loop thread and return its result."""
        async def _invoke():
            return func()

        return asyncio.run_coroutine_threadsafe(_invoke(), self.loop).result(timeout)

    @handle_errors(default_return=False, log_errors=True)
    def _close_pipeline(self, timeout: float) -> bool:
        asyncio.run_coroutine_threadsafe(self.pipeline.close(), self.loop).result(timeout)
        return True

    def stop(self, timeout: float = 10) -> None:
        """Cancel pending timers, close sessions and stop the loop; in-flight dispatches are abandoned."""
        if self._thread is None:
            return

        self._close_pipeline(timeout)

        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout)
        self._thread = None
        logger.info("Pipeline event loop stopped")


class StravaWebhookServer:
    """Flask front end for the activity pipeline"""

    def __init__(self, config: Config, runner: PipelineRunner):
        """
        Initialize the webhook server.

        Args:
            config: Application configuration
            runner: Started pipeline runner that receives events
        """
        self.config = config
        self.runner = runner
        self.received_events = 0

        self.app = Flask(__name__)
        self._setup_routes()

        logger.info("StravaWebhookServer initialized")

    def _setup_routes(self):
        """Setup Flask routes"""

        @self.app.after_request
        def add_security_headers(response):
            for header, value in create_security_headers().items():
                response.headers[header] = value
            return response

        @self.app.route('/webhook', methods=['GET'])
        def webhook_challenge():
            """Handle Strava webhook verification challenge"""
            challenge = request.args.get('hub.challenge')
            verify_token = request.args.get('hub.verify_token')

            logger.info("Webhook challenge received")

            if not challenge or not verify_token:
                logger.warning("Missing challenge or verify token")
                return jsonify({'error': 'Missing required parameters'}), 400

            challenge = SecurityValidator.sanitize_string(challenge, max_length=100)
            verify_token = SecurityValidator.sanitize_string(verify_token, max_length=100)

            if not SecurityValidator.verify_token(verify_token, self.config.strava.webhook_verify_token):
                logger.warning("Invalid verify token")
                return jsonify({'error': 'Invalid verify token'}), 403

            logger.info("Webhook challenge verified successfully")
            return jsonify({'hub.challenge': challenge}), 200

        @self.app.route('/webhook', methods=['POST'])
        def webhook_event():
            """Handle Strava webhook events"""
            if not request.is_json:
                logger.warning("Webhook received with invalid content type")
                return jsonify({'error': 'Content-Type must be application/json'}), 400

            event_data = request.get_json(silent=True)
            if not event_data:
                logger.warning("Received webhook with no JSON data")
                return jsonify({'error': 'No JSON data'}), 400

            try:
                event = WebhookEvent.from_payload(event_data)
            except ValidationError as e:
                logger.warning(f"Rejected webhook event: {e.message}")
                return jsonify({'error': e.message}), 400

            logger.info(f"Webhook event received: {json.dumps(event.to_log_dict())}")

            try:
                self.runner.submit_event(event)
            except RuntimeError as e:
                # Loop already closed during shutdown
                logger.error(f"Pipeline unavailable, dropping event for activity {event.object_id}: {e}")
                return jsonify({'error': 'Failed to process webhook event'}), 503

            self.received_events += 1
            return jsonify({'status': 'received'}), 200

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint"""
            running = self.runner.is_running
            status = {
                'status': 'healthy' if running else 'unhealthy',
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'pipeline': 'running' if running else 'stopped',
                'received_events': self.received_events
            }
            return jsonify(status), 200 if running else 503

        @self.app.route('/stats', methods=['GET'])
        def stats():
            """Queue, rate limiter and dedup statistics"""
            try:
                stats_data = self.runner.call(self.runner.pipeline.stats)
            except (concurrent.futures.TimeoutError, RuntimeError) as e:
                logger.error(f"Stats endpoint error: {e}")
                return jsonify({'error': 'Stats unavailable'}), 503

            stats_data['received_events'] = self.received_events
            return jsonify(stats_data), 200

        @self.app.route('/members', methods=['GET'])
        def list_members():
            """Active members without credentials"""
            members = self.runner.call(self.runner.pipeline.members.get_all_members)
            return jsonify({
                'count': len(members),
                'members': [
                    {'athlete_id': m.athlete_id, 'name': m.name, 'discord_linked': bool(m.discord_user_id)}
                    for m in members
                ]
            }), 200

        @self.app.route('/members/<int:athlete_id>/deactivate', methods=['POST'])
        def deactivate_member(athlete_id: int):
            return self._set_member_active(athlete_id, active=False)

        @self.app.route('/members/<int:athlete_id>/reactivate', methods=['POST'])
        def reactivate_member(athlete_id: int):
            return self._set_member_active(athlete_id, active=True)

    def _set_member_active(self, athlete_id: int, active: bool):
        members = self.runner.pipeline.members
        toggle = members.reactivate if active else members.deactivate

        if not self.runner.call(lambda: toggle(athlete_id)):
            return jsonify({'error': 'Member not found'}), 404

        return jsonify({'athlete_id': athlete_id, 'active': active}), 200

    def run(self, host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
        """
        Run the webhook server.

        Args:
            host: Host to bind to (configured host by default)
            port: Port to bind to (configured port by default)
            debug: Enable debug mode
        """
        host = host or self.config.server.host
        port = port or self.config.server.port
        logger.info(f"Starting webhook server on {host}:{port}")

        # The reloader would start a second pipeline loop
        self.app.run(host=host, port=port, debug=debug, use_reloader=False)


def create_app(config: Optional[Config] = None) -> Flask:
    """Create Flask app for WSGI deployment"""
    setup_logging()

    try:
        config = config or Config.from_env()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    runner = PipelineRunner(ActivityPipeline.from_config(config))
    runner.start()

    return StravaWebhookServer(config, runner).app

