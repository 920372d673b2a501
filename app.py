import logging
import os
from datetime import timedelta

import click
from dotenv import load_dotenv
load_dotenv()  # Load .env file (GEMINI_API_KEY, DATABASE_URL, etc.)

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from auth import init_oauth
from insight_service import InsightRefresher, InsightStore
from insight_sweep import refresh_all_insights
from llm_service import DEFAULT_BASE_URL, DEFAULT_MODEL, build_client
from models import db

logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s [%(levelname)s] %(message)s')
logger = logging.getLogger(__name__)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').strip().lower() in ('1', 'true', 'yes', 'on')


def _database_url() -> str:
    database_url = os.environ.get('DATABASE_URL', '')
    if database_url:
        # Hosted Postgres URLs start with postgres:// but SQLAlchemy needs postgresql://
        if database_url.startswith('postgres://'):
            database_url = database_url.replace('postgres://', 'postgresql://', 1)
        return database_url
    db_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'career_coach.db')
    return f'sqlite:///{db_path}'


def create_app(test_config: dict = None) -> Flask:
    """Build the app and its long-lived collaborators (model client, insight refresher)."""
    app = Flask(__name__)
    # Trust the reverse proxy headers so url_for() generates https:// URLs
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    app.config.update(
        SECRET_KEY=os.environ.get('SECRET_KEY', os.urandom(24)),
        PREFERRED_URL_SCHEME='https',
        SQLALCHEMY_DATABASE_URI=_database_url(),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        GEMINI_API_KEY=os.environ.get('GEMINI_API_KEY') or os.environ.get('GOOGLE_API_KEY', ''),
        GEMINI_MODEL=os.environ.get('GEMINI_MODEL', DEFAULT_MODEL),
        GEMINI_BASE_URL=os.environ.get('GEMINI_BASE_URL', DEFAULT_BASE_URL),
        INSIGHT_FRESHNESS_DAYS=float(os.environ.get('INSIGHT_FRESHNESS_DAYS', 7)),
        INSIGHT_MAX_ATTEMPTS=int(os.environ.get('INSIGHT_MAX_ATTEMPTS', 3)),
        INSIGHT_TIMEOUT_SECONDS=float(os.environ.get('INSIGHT_TIMEOUT_SECONDS', 15)),
        INSIGHT_BACKOFF_MS=int(os.environ.get('INSIGHT_BACKOFF_MS', 1000)),
        INSIGHTS_ALLOW_PLACEHOLDER=_env_flag('INSIGHTS_ALLOW_PLACEHOLDER'),
        GOOGLE_CLIENT_ID=os.environ.get('GOOGLE_CLIENT_ID', ''),
        GOOGLE_CLIENT_SECRET=os.environ.get('GOOGLE_CLIENT_SECRET', ''),
        # Admin token for the insight maintenance endpoints
        ADMIN_TOKEN=os.environ.get('ADMIN_TOKEN', 'change-me-in-production'),
    )
    if test_config:
        app.config.update(test_config)
    app.config['OAUTH_ENABLED'] = bool(app.config['GOOGLE_CLIENT_ID'])

    db.init_app(app)
    with app.app_context():
        db.create_all()

    if app.config['OAUTH_ENABLED']:
        init_oauth(app)

    # Collaborators: tests may inject their own through test_config.
    client = app.config.get('LLM_CLIENT')
    if client is None:
        client = build_client(app.config['GEMINI_API_KEY'], app.config['GEMINI_MODEL'],
                              app.config['GEMINI_BASE_URL'])
    app.extensions['llm_client'] = client

    refresher = app.config.get('INSIGHT_REFRESHER')
    if refresher is None:
        refresher = InsightRefresher(
            client,
            InsightStore(),
            freshness_window=timedelta(days=app.config['INSIGHT_FRESHNESS_DAYS']),
            max_attempts=app.config['INSIGHT_MAX_ATTEMPTS'],
            timeout=app.config['INSIGHT_TIMEOUT_SECONDS'],
            backoff_ms=app.config['INSIGHT_BACKOFF_MS'],
        )
    app.extensions['insight_refresher'] = refresher

    from routes import bp
    app.register_blueprint(bp)

    @app.cli.command('refresh-insights')
    def refresh_insights_command():
        """Regenerate insights for every stored industry (run weekly)."""
        result = refresh_all_insights(app.extensions['insight_refresher'])
        click.echo(f"Refreshed {result['refreshed']} industries, {result['failed']} failed")

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5050))
    create_app().run(debug=True, port=port)
