import pytest

from app import create_app
from config import Config
from models import db
from models.place import Place
from models.user import Role, User
from security.session import create_session


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    CREATE_TABLES_ON_START = True
    SECRET_KEY = "test-secret-key"
    APP_TIMEZONE = "Asia/Tashkent"
    APP_BASE_URL = "https://api.example.test"
    FRONTEND_BASE_URL = "https://app.example.test"
    CLICK_SERVICE_ID = "12345"
    CLICK_MERCHANT_ID = "678"
    CLICK_SECRET_KEY = "click-secret"
    CLICK_MERCHANT_USER_ID = None
    CLICK_CHECKOUT_BASE_URL = "https://my.click.uz"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Create a user with roles and return (user, bearer headers)."""
    def _make(email, *roles, phone_number=None):
        user = User(email=email, full_name=email.split("@")[0], phone_number=phone_number)
        for name in roles:
            user.roles.append(Role.query.filter_by(name=name).one())
        db.session.add(user)
        db.session.commit()
        with app.test_request_context():
            token = create_session(user.id)
        return user, {"Authorization": "Bearer %s" % token}
    return _make


@pytest.fixture
def make_place(app):
    def _make(owner, **fields):
        place = Place(owner_user_id=owner.id, title=fields.pop("title", "Studio"), **fields)
        db.session.add(place)
        db.session.commit()
        return place
    return _make
