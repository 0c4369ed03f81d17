import logging
import threading
from datetime import datetime
from typing import Dict, Any

from flask import Flask, jsonify, request
from flask_cors import CORS


class APIServer:
    """Read-only REST API over the running agent"""

    def __init__(self, config: Dict[str, Any], components: Dict[str, Any]):
        self.config = config or {}
        self.components = components
        self.logger = self._setup_logger()

        self.app = Flask(__name__)
        CORS(self.app)

        self.setup_routes()

    def _setup_logger(self):
        return logging.getLogger('APIServer')

    def setup_routes(self):
        """Setup API routes"""

        @self.app.route('/api/status', methods=['GET'])
        def get_status():
            scheduler = self.components.get('scheduler')
            router = self.components.get('router')

            status = {
                'status': 'running',
                'timestamp': datetime.now().isoformat(),
                'components': {name: 'active' for name, value in self.components.items() if value is not None}
            }
            if scheduler:
                status['scheduler_state'] = scheduler.state.value
                status['jobs'] = scheduler.job_states()
                status['started_at'] = scheduler.started_at.isoformat() if scheduler.started_at else None
            if router:
                status['channels'] = [channel.name for channel in router.enabled_channels()]
            return jsonify(status)

        @self.app.route('/api/alerts', methods=['GET'])
        def get_alerts():
            limit = request.args.get('limit', 100, type=int)

            dispatcher = self.components.get('dispatcher')
            if dispatcher:
                return jsonify({'alerts': dispatcher.get_alerts(limit)})
            return jsonify({'error': 'Alert dispatcher not available'}), 500

        @self.app.route('/api/stats', methods=['GET'])
        def get_stats():
            stats = {}

            scheduler = self.components.get('scheduler')
            snapshot = scheduler.last_snapshot if scheduler else None
            if snapshot is not None:
                stats['system'] = {
                    'taken_at': snapshot.taken_at.isoformat(),
                    'hostname': snapshot.hostname,
                    'cpu_percent': snapshot.cpu_percent,
                    'ram_percent': snapshot.ram_percent,
                    'disk_percent': snapshot.disk_percent,
                    'sessions': len(snapshot.sessions) if snapshot.sessions is not None else None,
                    'processes': len(snapshot.processes) if snapshot.processes is not None else None
                }

            dispatcher = self.components.get('dispatcher')
            if dispatcher:
                stats['alerts'] = dispatcher.get_alert_statistics()

            return jsonify(stats)

    def start(self):
        """Start API server (blocking)"""
        host = self.config.get('host', '127.0.0.1')
        port = self.config.get('port', 5001)
        debug = self.config.get('debug', False)

        self.logger.info(f"API server on http://{host}:{port}")
        self.app.run(host=host, port=port, debug=debug, threaded=True, use_reloader=False)

    def start_in_thread(self) -> threading.Thread:
        thread = threading.Thread(target=self.start, name="API Server", daemon=True)
        thread.start()
        return thread
