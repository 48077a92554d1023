import os
from flask import Flask
from .context import WyneContext
from .routes import bp as routes_bp

# Bind only localhost unless overridden
BIND = os.environ.get("BIND", "127.0.0.1")
PORT = int(os.environ.get("PORT", "5000"))
LOG_LEVEL = os.environ.get("WYNE_LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("WYNE_LOG_FILE")

def create_app(context: WyneContext) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET", "dev-" + os.urandom(8).hex())
    app.config["APP_TITLE"] = "Wyne Shelf"
    app.config["WYNE_CONTEXT"] = context
    app.config["GAMES_ROOT"] = str(context.layout.games)
    app.config["SETTINGS_FILE"] = str(context.layout.settings_file)
    app.config["OUTPUT_PAGE_SIZE"] = 500

    app.register_blueprint(routes_bp)
    context.catalog.scan()
    return app
