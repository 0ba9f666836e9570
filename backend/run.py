from farmeow import create_app, socketio
from farmeow.services.rounds import start_round_poller

app = create_app()

if __name__ == '__main__':
    poller = start_round_poller(app)
    try:
        # Werkzeug is only used when neither eventlet nor gevent is installed
        socketio.run(app, host='0.0.0.0', port=app.config['PORT'], allow_unsafe_werkzeug=True)
    finally:
        if poller:
            poller.stop()
