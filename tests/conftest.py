import jwt
import pytest

from delivery_service.app import create_app
from delivery_service.client import DispatchClient
from delivery_service.db import db
from delivery_service.init_db import seed_menu
from delivery_service.models import MenuItem, Role
from delivery_service.services.orders import complete_payment, place_order
from delivery_service.services.users import ensure_user

SECRET = "test-secret"


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    for var in ["DATABASE_URL", "JWT_SECRET", "DELIVERY_EARNING", "BUS_QUEUE_SIZE"]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'delivery.db'}",
        "JWT_SECRET": SECRET,
        "STREAM_HEARTBEAT_SEC": 0.2,
    })
    with app.app_context():
        seed_menu()
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def bus(app):
    return app.extensions["change_bus"]


@pytest.fixture
def users(app):
    """ids of one eater, two partners, a second eater and an admin."""
    with app.app_context():
        return {
            "eater": ensure_user("eater-1", Role.EATER, "Eater One").id,
            "eater2": ensure_user("eater-2", Role.EATER, "Eater Two").id,
            "p1": ensure_user("partner-1", Role.DELIVERY_PARTNER, "Partner One").id,
            "p2": ensure_user("partner-2", Role.DELIVERY_PARTNER, "Partner Two").id,
            "admin": ensure_user("admin", Role.ADMIN).id,
        }


@pytest.fixture
def token():
    def make(subject, role):
        role = getattr(role, "value", role)
        return jwt.encode({"sub": subject, "role": role}, SECRET, algorithm="HS256")
    return make


@pytest.fixture
def auth(token):
    def headers(subject, role):
        return {"Authorization": f"Bearer {token(subject, role)}"}
    return headers


@pytest.fixture
def new_order(app, users):
    """Place a (placed, pending) order for the eater; returns its id."""
    def make(user_key="eater", quantity=1):
        with app.app_context():
            item = MenuItem.query.order_by(MenuItem.id).first()
            order = place_order(users[user_key], [{"menu_item_id": item.id, "quantity": quantity}])
            return order.id
    return make


@pytest.fixture
def paid_order(app, new_order):
    """Place and pay an order; returns its id."""
    def make(user_key="eater", amount=50000):
        order_id = new_order(user_key)
        with app.app_context():
            complete_payment(order_id, amount)
        return order_id
    return make


class FlaskSession:
    """Stands in for ``requests.Session`` and routes calls into the Flask test client."""

    def __init__(self, test_client, base_url):
        self.test_client = test_client
        self.base_url = base_url
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, params=None, json=None):
        path = url[len(self.base_url):]
        self.calls.append((method, path))
        resp = self.test_client.open(path, method=method, headers=headers, query_string=params, json=json)
        return _Response(resp)


class _Response:
    def __init__(self, resp):
        self.status_code = resp.status_code
        self.ok = resp.status_code < 400
        self.content = resp.get_data()
        self._resp = resp

    def json(self):
        data = self._resp.get_json(silent=True)
        if data is None:
            raise ValueError("no JSON body")
        return data


@pytest.fixture
def http_client(app, token):
    """DispatchClient for ``subject``/``role`` wired to the app without a network."""
    def make(subject, role):
        base = "http://delivery.test"
        return DispatchClient(
            base, token=token(subject, role), retries=0,
            session=FlaskSession(app.test_client(), base),
        )
    return make
