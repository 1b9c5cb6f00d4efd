"""
Pytest fixtures for coopfood backend tests.

Provides test database setup, reference data fixtures, session tokens and
test client.
"""

import pytest

from coopfood import create_app
from coopfood.extensions import db
from coopfood.models import Branch, BranchItemPrice, Department, Item, Member
from coopfood.services import session_service, settings_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'EXPORT_PACING_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def dutse(db_session):
    branch = Branch(code="DUTSE", name="Dutse")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def gwarimpa(db_session):
    branch = Branch(code="GWARIMPA", name="Gwarimpa")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def ops(db_session):
    department = Department(name="Ops")
    db_session.add(department)
    db_session.commit()
    return department


@pytest.fixture(scope='function')
def member(db_session, dutse, ops):
    """Member A12345 with 100,000 savings, no loans, 500,000 global limit."""
    m = Member(
        member_id="A12345",
        full_name="Amina Bello",
        category="A",
        grade="senior",
        savings=100000,
        loans=0,
        global_limit=500000,
        branch_id=dutse.id,
        department_id=ops.id,
    )
    db_session.add(m)
    db_session.commit()
    return m


@pytest.fixture(scope='function')
def rice(db_session, dutse):
    """RICE50KG priced 49,500 at DUTSE with 100 bags of initial stock."""
    item = Item(sku="RICE50KG", name="Rice 50kg", unit="bag", category="Grains")
    db_session.add(item)
    db_session.flush()
    db_session.add(BranchItemPrice(branch_id=dutse.id, item_id=item.id, price=49500, initial_stock=100))
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def beans(db_session, dutse):
    """BEANS25KG priced 20,000 at DUTSE with 30 bags of initial stock."""
    item = Item(sku="BEANS25KG", name="Beans 25kg", unit="bag", category="Grains")
    db_session.add(item)
    db_session.flush()
    db_session.add(BranchItemPrice(branch_id=dutse.id, item_id=item.id, price=20000, initial_stock=30))
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def shopping_open(db_session):
    settings_service.set_shopping_open(True)


@pytest.fixture(scope='function')
def admin_token(db_session):
    _, token = session_service.create_session("admin", "admin1")
    return token


@pytest.fixture(scope='function')
def rep_token(db_session, dutse):
    _, token = session_service.create_session("rep", "rep1", branch_id=dutse.id)
    return token


@pytest.fixture(scope='function')
def member_token(db_session, member):
    _, token = session_service.create_session("member", "Amina Bello", member_id=member.member_id)
    return token


def auth_headers(token):
    """Helper to create authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin_token):
    return auth_headers(admin_token)


@pytest.fixture(scope='function')
def rep_headers(rep_token):
    return auth_headers(rep_token)


@pytest.fixture(scope='function')
def member_headers(member_token):
    return auth_headers(member_token)
