from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
import click
import json
import time
from config import Config

socketio = SocketIO(async_mode=None)


def create_app(config_class=Config, scheduler=None):
    """Build the Flask app and the room services it serves.

    ``scheduler`` defaults to Socket.IO background tasks; tests pass a manual
    one so they control time.
    """
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))
    flask_app.config.setdefault('STARTED_AT', time.time())

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from trivia.models import RoomSettings
    from trivia.services.games import QuestionBank, RoomRegistry, SessionOrchestrator, SocketIOScheduler
    from trivia.socketio_events import SocketIOBroadcaster, register_socketio_handlers

    namespace = flask_app.config.get('SOCKETIO_NAMESPACE', '/ws')
    if scheduler is None:
        scheduler = SocketIOScheduler(
            socketio,
            logger=flask_app.logger,
            heartbeat_sec=flask_app.config.get('TIMER_HEARTBEAT_SEC', 0),
        )
    question_bank = QuestionBank.from_json(flask_app.config.get('QUESTIONS_FILE'))
    registry = RoomRegistry(
        question_bank,
        settings=RoomSettings.from_config(flask_app.config),
        clock=scheduler.time,
        retention_seconds=flask_app.config.get('ROOM_RETENTION_SEC', 3600),
        start_stall_seconds=flask_app.config.get('START_STALL_SEC'),
        logger=flask_app.logger,
    )
    broadcaster = SocketIOBroadcaster(socketio, namespace=namespace)
    orchestrator = SessionOrchestrator(
        registry,
        broadcaster,
        scheduler,
        logger=flask_app.logger,
        min_players=flask_app.config.get('MIN_PLAYERS', 2),
        lead_in_seconds=flask_app.config.get('LEAD_IN_DURATION_SEC', 3.0),
        reveal_seconds=flask_app.config.get('REVEAL_DURATION_SEC', 5.0),
        end_on_all_answered=flask_app.config.get('END_ON_ALL_ANSWERED', True),
    )
    flask_app.extensions['trivia'] = {
        'question_bank': question_bank,
        'registry': registry,
        'broadcaster': broadcaster,
        'scheduler': scheduler,
        'orchestrator': orchestrator,
    }
    flask_app.logger.info(f"[startup] questions={len(question_bank)} namespace={namespace}")

    from trivia.routes import main
    flask_app.register_blueprint(main)

    from trivia.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api')

    register_socketio_handlers(namespace=namespace)

    orchestrator.start_reclaimer(flask_app.config.get('RECLAIM_INTERVAL_SEC', 0))

    @click.command('rooms-stats')
    def rooms_stats_command():
        """Print live room statistics."""
        click.echo(json.dumps(orchestrator.stats(), indent=2))

    @click.command('rooms-reclaim')
    def rooms_reclaim_command():
        """Run one reclamation sweep now."""
        reclaimed = orchestrator.reclaim()
        click.echo(f'Reclaimed {len(reclaimed)} room(s): {", ".join(reclaimed) or "-"}')

    flask_app.cli.add_command(rooms_stats_command)
    flask_app.cli.add_command(rooms_reclaim_command)

    return flask_app
