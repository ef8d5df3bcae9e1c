import os, sys, pytest
# Ensure backend directory is on path so 'erp_core' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from erp_core import create_app, get_db
from erp_core.models import Base  # registers every table before create_all
from erp_core.services.sequence_store import SqlSequenceStore

from test_utils_seed import BOOTSTRAP_EMAIL


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret-key-that-is-long-enough-for-hs256',
        'BOOTSTRAP_ADMIN_EMAILS': (BOOTSTRAP_EMAIL,),
        'SEQUENCE_RETRY_BASE_DELAY': 0.0,
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
def file_session_factory(tmp_path):
    """Independent file-backed database; safe to hit from several threads."""
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'sequences.db'}", future=True)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    engine.dispose()


@pytest.fixture()
def seq_store(file_session_factory):
    return SqlSequenceStore(file_session_factory)
