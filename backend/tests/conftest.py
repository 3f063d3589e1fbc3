import os, sys, pytest
# Ensure backend directory is on path so 'admin_trust' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from flask_jwt_extended import create_access_token
from admin_trust import create_app, get_db
from admin_trust.models.authz import Base
import admin_trust.models.audit  # noqa: F401


@pytest.fixture()
def app_instance():
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret-key-0123456789-abcdefghij',
        'TESTING': True,
    })
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app

@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()

@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance

@pytest.fixture()
def auth_headers(app_context):
    def _make(user_id: str):
        token = create_access_token(identity=str(user_id))
        return {'Authorization': f'Bearer {token}'}
    return _make

@pytest.fixture()
def session_factory():
    """Standalone in-memory store for service-level tests (no Flask app)."""
    engine = create_engine(
        'sqlite+pysqlite:///:memory:',
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    engine.dispose()
