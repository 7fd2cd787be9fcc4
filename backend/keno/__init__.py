from flask import Flask
from flask.cli import with_appcontext
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from keno.routes import main
    flask_app.register_blueprint(main)

    from keno.api.rounds import rounds
    flask_app.register_blueprint(rounds, url_prefix='/api/keno')

    from keno.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from keno.models import Account, AggregateStats
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            db.session.add(AggregateStats(id=1))
            # Seed demo accounts
            for user_id in ['player1', 'player2', 'player3']:
                db.session.add(Account(user_id=user_id, balance=10000))

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('run-engine')
    def run_engine_command():
        """Runs the round engine in the foreground until interrupted."""
        from keno.services.rounds.engine import RoundEngine
        RoundEngine(flask_app).run_forever()

    @click.command('settle-round')
    @click.argument('round_id', type=int)
    @with_appcontext
    def settle_round_command(round_id):
        """Re-runs settlement for a round whose settlement did not complete."""
        from keno.services.rounds.engine import RoundEngine
        from keno.services.rounds.errors import KenoError
        try:
            report = RoundEngine(flask_app).resettle(round_id)
        except KenoError as exc:
            raise click.ClickException(str(exc))
        print(f'Round {round_id}: settled={report.settled} skipped={report.skipped} paid={report.total_paid}')

    @click.command('credit-account')
    @click.argument('user_id')
    @click.argument('amount', type=click.IntRange(min=1))
    @with_appcontext
    def credit_account_command(user_id, amount):
        """Creates the account if needed and credits it by AMOUNT."""
        from keno.services.rounds.store import RoundStore
        balance = RoundStore(flask_app).credit_account(user_id, amount)
        print(f'{user_id}: balance={balance}')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(run_engine_command)
    flask_app.cli.add_command(settle_round_command)
    flask_app.cli.add_command(credit_account_command)

    return flask_app
