"""
Health Monitoring HTTP Server for server-time.

Provides a simple HTTP endpoint for monitoring clock sync status. Useful
for integration with monitoring systems like Prometheus, or simple health
checks when server-time runs as a daemon.

Endpoints:
    GET /health     - Basic health check (200 OK if running)
    GET /status     - JSON clock sync status
    GET /metrics    - Prometheus-compatible metrics

Usage:
    from server_time.output.health_server import HealthServer

    server = HealthServer(port=8080)
    server.set_coordinator(coordinator)
    server.start()
"""

import json
import logging
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

# Numeric encoding of coordinator states for the state gauge
STATE_VALUES = {'IDLE': 1, 'RUNNING': 2, 'COMPLETE': 3}

# Numeric encoding of run outcomes for the outcome gauge
OUTCOME_VALUES = {'CORRECTED': 1, 'IN_SYNC': 2, 'FAILED': 3, 'CANCELLED': 4}


class HealthRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for health endpoints."""

    # Class-level reference to status callback
    get_status: Optional[Callable[[], Dict[str, Any]]] = None

    def log_message(self, format, *args):
        """Route HTTP access logging to debug."""
        logger.debug(format % args)

    def do_GET(self):
        """Handle GET requests."""
        if self.path == '/health':
            self._handle_health()
        elif self.path == '/status':
            self._handle_status()
        elif self.path == '/metrics':
            self._handle_metrics()
        else:
            self.send_error(404, "Not Found")

    def _send(self, code: int, content_type: str, body: bytes):
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.end_headers()
        self.wfile.write(body)

    def _handle_health(self):
        """Basic health check - returns 200 if server is running."""
        self._send(200, 'text/plain', b'OK\n')

    def _handle_status(self):
        """Return JSON status of the coordinator."""
        if not self.get_status:
            self._send(503, 'application/json',
                       json.dumps({'error': 'No coordinator connected'}).encode())
            return
        try:
            status = self.get_status()
        except Exception as e:
            logger.error(f"Status callback failed: {e}")
            self._send(500, 'application/json', json.dumps({'error': str(e)}).encode())
            return
        self._send(200, 'application/json', json.dumps(status, indent=2).encode())

    def _handle_metrics(self):
        """Return Prometheus-compatible metrics."""
        if not self.get_status:
            self._send(503, 'text/plain', b'# No coordinator connected\n')
            return
        try:
            metrics = self._format_prometheus_metrics(self.get_status())
        except Exception as e:
            logger.error(f"Status callback failed: {e}")
            self._send(500, 'text/plain', f'# Error: {e}\n'.encode())
            return
        self._send(200, 'text/plain; version=0.0.4', metrics.encode())

    def _format_prometheus_metrics(self, status: Dict[str, Any]) -> str:
        """Format status as Prometheus metrics."""
        lines = [
            '# HELP server_time_runs_total Clock sync runs started',
            '# TYPE server_time_runs_total counter',
            f'server_time_runs_total {status.get("runs", 0)}',
            '',
            '# HELP server_time_corrections_total Runs that published a correction',
            '# TYPE server_time_corrections_total counter',
            f'server_time_corrections_total {status.get("corrections", 0)}',
            '',
            '# HELP server_time_failures_total Runs that obtained no estimate',
            '# TYPE server_time_failures_total counter',
            f'server_time_failures_total {status.get("failures", 0)}',
            '',
            '# HELP server_time_threshold_ms Offset below which no correction is published',
            '# TYPE server_time_threshold_ms gauge',
            f'server_time_threshold_ms {status.get("threshold_ms", 0):.3f}',
            '',
            '# HELP server_time_state Coordinator state (1=IDLE, 2=RUNNING, 3=COMPLETE)',
            '# TYPE server_time_state gauge',
            f'server_time_state {STATE_VALUES.get(status.get("state", "IDLE"), 0)}',
        ]

        offset_ms = status.get('offset_ms')
        if offset_ms is not None:
            lines.extend([
                '',
                '# HELP server_time_offset_ms Estimated server clock offset in milliseconds',
                '# TYPE server_time_offset_ms gauge',
                f'server_time_offset_ms {offset_ms:.6f}',
            ])

        last_outcome = status.get('last_outcome')
        if last_outcome:
            outcome_value = OUTCOME_VALUES.get(last_outcome.get('outcome'), 0)
            lines.extend([
                '',
                '# HELP server_time_last_outcome Last run outcome '
                '(1=CORRECTED, 2=IN_SYNC, 3=FAILED, 4=CANCELLED)',
                '# TYPE server_time_last_outcome gauge',
                f'server_time_last_outcome {outcome_value}',
                '',
                '# HELP server_time_last_run_seconds Duration of the last run',
                '# TYPE server_time_last_run_seconds gauge',
                f'server_time_last_run_seconds {last_outcome.get("duration_s", 0):.3f}',
            ])

        lines.append('')
        return '\n'.join(lines)


class HealthServer:
    """
    HTTP server for health monitoring.

    Runs in a background thread and provides endpoints for monitoring
    the clock sync coordinator.
    """

    def __init__(self, port: int = 8080, bind_address: str = '0.0.0.0'):
        """
        Initialize the health server.

        Args:
            port: HTTP port to listen on
            bind_address: Address to bind to (default: all interfaces)
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.coordinator = None
        self._running = False

    def set_coordinator(self, coordinator):
        """
        Connect to a ClockSyncCoordinator for status reporting.

        Args:
            coordinator: ClockSyncCoordinator instance
        """
        self.coordinator = coordinator
        HealthRequestHandler.get_status = self._get_status

    def _get_status(self) -> Dict[str, Any]:
        if not self.coordinator:
            return {'error': 'No coordinator connected'}
        return self.coordinator.status()

    def start(self) -> bool:
        """
        Start the health server in a background thread.

        Returns:
            True if the server is listening
        """
        if self._running:
            logger.warning("Health server already running")
            return True

        try:
            self.server = HTTPServer(
                (self.bind_address, self.port),
                HealthRequestHandler
            )
        except OSError as e:
            logger.error(f"Failed to start health server on port {self.port}: {e}")
            return False

        self._running = True
        self.thread = threading.Thread(
            target=self.server.serve_forever,
            kwargs={'poll_interval': 0.5},
            name="HealthServer",
            daemon=True
        )
        self.thread.start()

        logger.info(f"Health server started on http://{self.bind_address}:{self.port}")
        logger.info("  GET /health  - Health check")
        logger.info("  GET /status  - JSON status")
        logger.info("  GET /metrics - Prometheus metrics")
        return True

    def stop(self):
        """Stop the health server."""
        if not self._running:
            return
        self._running = False
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None
        logger.info("Health server stopped")
