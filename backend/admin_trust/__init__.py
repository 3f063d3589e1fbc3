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
jwt = JWTManager()


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['PERMISSION_CACHE_TTL_SECONDS'] = int(os.getenv('PERMISSION_CACHE_TTL_SECONDS', '300'))
    app.config['ADMIN_AUTO_BOOTSTRAP'] = _env_flag('ADMIN_AUTO_BOOTSTRAP')
    app.config['AUDIT_MAX_LIMIT'] = int(os.getenv('AUDIT_MAX_LIMIT', '100'))

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
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .services.registry import build_services
    app.extensions['admin_trust'] = build_services(SessionLocal, app.config['PERMISSION_CACHE_TTL_SECONDS'])

    if app.config['ADMIN_AUTO_BOOTSTRAP']:
        from .models.authz import Base
        from .models.audit import AuditEntry  # noqa: F401  registers admin_audit_log
        from .services.bootstrap import seed_catalog
        Base.metadata.create_all(db_engine)
        session = SessionLocal()
        try:
            counts = seed_catalog(session)
            session.commit()
            app.logger.info('Admin catalog bootstrapped: %s', counts)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    from .routes.admin import admin_bp
    app.register_blueprint(admin_bp, url_prefix='/admin')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.teardown_appcontext
    def remove_session(exc):  # type: ignore
        SessionLocal.remove()

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
