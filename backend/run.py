from keno import create_app, socketio
from keno.services.rounds.engine import start_round_engine

app = create_app()

if __name__ == '__main__':
    if app.config.get('ENGINE_AUTOSTART'):
        start_round_engine(app)
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True, use_reloader=False)
