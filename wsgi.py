# wsgi.py
import os

from app import create_app
from config import CONFIGS, ProductionConfig
from realtime import socketio  # shared SocketIO instance

# gunicorn/uwsgi entrypoint: production settings unless APP_CONFIG says otherwise
app = create_app(CONFIGS.get(os.environ.get("APP_CONFIG", "production"), ProductionConfig))
app.logger.info("[wsgi] railway-ops up (config=%s)", os.environ.get("APP_CONFIG", "production"))

# Local dev only: `python wsgi.py`
if __name__ == "__main__":
    socketio.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        allow_unsafe_werkzeug=True,
    )
