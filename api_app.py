import atexit
import datetime
import logging
from dataclasses import dataclass
from typing import Optional

from flask import Flask, jsonify, request

import config
from eventwatch.admin import AdminControl
from eventwatch.analyzer import AlertEvaluator
from eventwatch.error_handling import configure_logging
from eventwatch.event_store import EventStore
from eventwatch.logging_db import DatabaseManager
from eventwatch.models import Severity
from eventwatch.monitor import HostMonitor
from eventwatch.monitor_base import MonitorBase
from eventwatch.notifications import DiscordNotifier
from eventwatch.scheduler import MonitoringScheduler

logger = logging.getLogger(__name__)


@dataclass
class Components:
    db: DatabaseManager
    monitor: MonitorBase
    notifier: DiscordNotifier
    store: EventStore
    evaluator: AlertEvaluator
    scheduler: MonitoringScheduler
    admin: AdminControl


def build_components(settings: config.Settings, monitor: Optional[MonitorBase] = None,
                     notifier: Optional[DiscordNotifier] = None) -> Components:
    db = DatabaseManager(settings.db_path)
    db.init_db()

    monitor = monitor or HostMonitor(
        upload_dir=settings.upload_dir,
        use_remote_storage=settings.use_remote_storage,
        cpu_interval=settings.cpu_sample_interval,
    )
    notifier = notifier or DiscordNotifier(
        webhook_url=settings.discord_webhook_url,
        environment=settings.environment,
        timeout=settings.webhook_timeout,
    )
    store = EventStore(db, monitor=monitor, notifier=notifier)
    store.initialize_alert_rules()

    evaluator = AlertEvaluator(
        db, store, monitor,
        use_remote_storage=settings.use_remote_storage,
        default_storage_limit=settings.default_storage_limit,
    )
    scheduler = MonitoringScheduler(
        evaluator, store,
        check_interval_minutes=settings.check_interval_minutes,
        cleanup_interval_hours=settings.cleanup_interval_hours,
        retention_days=settings.retention_days,
    )
    admin = AdminControl(evaluator, store, notifier, scheduler)
    return Components(db, monitor, notifier, store, evaluator, scheduler, admin)


def _parse_severity(value):
    if value in (None, ''):
        return None
    return Severity(str(value).upper())


def _admin_email():
    return request.headers.get('X-Admin-Email')


def _result_response(result):
    if result.success:
        return jsonify(result.to_dict())
    return jsonify(result.to_dict()), 404 if result.not_found else 500


def create_app(settings: Optional[config.Settings] = None, start_monitoring: bool = True,
               components: Optional[Components] = None) -> Flask:
    settings = settings or config.Settings.from_env()
    configure_logging(settings)

    app = Flask(__name__)
    components = components or build_components(settings)
    app.extensions['eventwatch'] = components
    admin = components.admin

    if start_monitoring:
        components.scheduler.start()
        atexit.register(components.scheduler.stop)

    @app.errorhandler(ValueError)
    def handle_bad_value(e):
        return jsonify({'success': False, 'error': str(e)}), 400

    @app.before_request
    def require_admin_identity():
        if request.path.startswith('/api/admin/') and not _admin_email():
            return jsonify({'success': False, 'error': 'X-Admin-Email header is required'}), 400

    @app.route('/api/health')
    def api_health():
        metrics = components.monitor.sample().to_dict()
        metrics['timestamp'] = datetime.datetime.now(datetime.timezone.utc).isoformat()
        return jsonify(metrics)

    @app.route('/api/events')
    def api_events():
        limit = request.args.get('limit', 50, type=int)
        severity = _parse_severity(request.args.get('severity'))
        user_id = request.args.get('user_id') or None
        events = admin.recent_events(limit=limit, severity=severity, user_id=user_id)
        return jsonify([e.to_dict() for e in events])

    @app.route('/api/events/stats')
    def api_event_stats():
        hours = request.args.get('hours', 24, type=float)
        return jsonify(admin.event_stats(hours))

    @app.route('/api/monitoring/status')
    def api_monitoring_status():
        return jsonify(admin.monitoring_status())

    @app.route('/api/admin/checks', methods=['POST'])
    def trigger_checks():
        return _result_response(admin.trigger_checks(_admin_email()))

    @app.route('/api/admin/cleanup', methods=['POST'])
    def cleanup_events():
        return _result_response(admin.cleanup_old_events(_admin_email(), settings.retention_days))

    @app.route('/api/admin/events/<event_id>', methods=['DELETE'])
    def delete_event(event_id):
        return _result_response(admin.delete_event(_admin_email(), event_id))

    @app.route('/api/admin/events/clear', methods=['POST'])
    def clear_events():
        data = request.get_json(silent=True) or {}
        severity = _parse_severity(data.get('severity'))
        return _result_response(admin.clear_all(_admin_email(), severity))

    @app.route('/api/admin/events/clear-non-critical', methods=['POST'])
    def clear_non_critical_events():
        return _result_response(admin.clear_non_critical(_admin_email()))

    return app


if __name__ == '__main__':
    app = create_app()
    logger.info(f"eventwatch started ({config.ENVIRONMENT})")
    # Reloader off: it would start a second scheduler in the child process
    app.run(host='0.0.0.0', port=5000, debug=False)
