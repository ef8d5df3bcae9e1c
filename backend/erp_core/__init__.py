from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

load_dotenv()

db_engine = None
SessionLocal = None
SessionFactory = None
sequence_store = None
jwt = JWTManager()


def _env_list(name: str, default: str = ''):
    return tuple(v.strip() for v in os.getenv(name, default).split(',') if v.strip())


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal, SessionFactory, sequence_store
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['SEQUENCE_MAX_RETRIES'] = int(os.getenv('SEQUENCE_MAX_RETRIES', '10'))
    app.config['SEQUENCE_RETRY_BASE_DELAY'] = float(os.getenv('SEQUENCE_RETRY_BASE_DELAY', '0.01'))
    # Last-resort allow-list used only while no persisted admin exists
    app.config['BOOTSTRAP_ADMIN_EMAILS'] = _env_list('BOOTSTRAP_ADMIN_EMAILS')
    app.config['ELEVATED_ROLES'] = _env_list('ELEVATED_ROLES', 'admin')

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionFactory = sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False)
    SessionLocal = scoped_session(SessionFactory)

    # Counters are written through their own short-lived sessions, never the request session
    from .services.sequence_store import SqlSequenceStore
    sequence_store = SqlSequenceStore(SessionFactory)

    jwt.init_app(app)

    from .routes.iam import iam_bp
    from .routes.sequences import seq_bp
    from .routes.provisioning import prov_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(seq_bp, url_prefix='/sequences')
    app.register_blueprint(prov_bp, url_prefix='/iam/provisioning')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    from .errors import ErpError

    @app.errorhandler(ErpError)
    def handle_domain_error(e):  # type: ignore
        if e.status >= 500:
            app.logger.warning('%s: %s', e.code, e.detail)
        return {
            'error': {
                'status': e.status,
                'code': e.code,
                'title': e.title,
                'detail': e.detail,
            }
        }, e.status

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def get_db():
    return SessionLocal()


def get_session_factory():
    return SessionFactory


def get_sequence_store():
    return sequence_store
