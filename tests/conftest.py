"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# --- Default environment for the test run
os.environ.setdefault("DATABASE_URL", "sqlite:///./marketplace_test.db")
os.environ.setdefault("API_KEY", "test-secret-key")
os.environ.setdefault("MKT_ENV", "dev")

from marketplace.main import app  # noqa: E402
from marketplace.db import get_db  # noqa: E402
from marketplace.models import ListingType, Product, ProductStatus, User  # noqa: E402
from marketplace.models.api_key import ApiKey, ApiScope  # noqa: E402
from marketplace.services.coordinator import TransitionCoordinator, build_coordinator  # noqa: E402
from marketplace.utils.apikey import hash_key  # noqa: E402

DB_PATH = Path("./marketplace_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file for every session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)


# pysqlite manages BEGIN itself and breaks SAVEPOINT; take control of it so
# each test can run inside a rolled-back outer transaction.
@event.listens_for(engine, "connect")
def _sqlite_disable_autobegin(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_emit_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
    join_transaction_mode="create_savepoint",
)

# --- (2) Schema comes from Alembic only
_run_migrations()


@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def open_session() -> Iterator[Callable[[], Session]]:
    """Sessions on their own connections; their commits outlive the test transaction."""

    opened: list[Session] = []

    def _open() -> Session:
        session = TestingSessionLocal(bind=engine)
        opened.append(session)
        return session

    yield _open
    for session in opened:
        session.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['API_KEY']}"}


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(name: str = "user", *, is_active: bool = True) -> User:
        suffix = uuid4().hex[:8]
        user = User(username=f"{name}-{suffix}", email=f"{name}-{suffix}@example.com", is_active=is_active)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _factory


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., ApiKey]:
    def _factory(
        name: str,
        key: str,
        scope: ApiScope = ApiScope.member,
        is_active: bool = True,
        user: User | None = None,
    ) -> ApiKey:
        api_key = ApiKey(
            name=name,
            prefix="test_" + scope.value,
            key_hash=hash_key(key),
            scope=scope,
            is_active=is_active,
            user_id=user.id if user is not None else None,
        )
        db_session.add(api_key)
        db_session.commit()
        db_session.refresh(api_key)
        return api_key

    return _factory


@pytest.fixture
def headers_for(make_api_key: Callable[..., ApiKey]) -> Callable[[User], dict[str, str]]:
    """Return Authorization headers for a member key linked to ``user``."""

    def _factory(user: User) -> dict[str, str]:
        token = f"member-{uuid4().hex}"
        make_api_key(name=f"member-{uuid4().hex}", key=token, scope=ApiScope.member, user=user)
        return {"Authorization": f"Bearer {token}"}

    return _factory


@pytest.fixture
def admin_headers(make_api_key: Callable[..., ApiKey]) -> dict[str, str]:
    token = f"admin-{uuid4().hex}"
    make_api_key(name=f"admin-{uuid4().hex}", key=token, scope=ApiScope.admin)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def support_headers(make_api_key: Callable[..., ApiKey]) -> dict[str, str]:
    token = f"support-{uuid4().hex}"
    make_api_key(name=f"support-{uuid4().hex}", key=token, scope=ApiScope.support)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_product(db_session: Session) -> Callable[..., Product]:
    def _factory(
        seller: User,
        *,
        price: str = "2000.00",
        listing_type: ListingType = ListingType.fixed,
        status: ProductStatus = ProductStatus.active,
    ) -> Product:
        product = Product(
            seller_id=seller.id,
            title=f"Item {uuid4().hex[:6]}",
            price=Decimal(price),
            listing_type=listing_type,
            status=status,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _factory


@pytest.fixture
def marketplace(make_user, make_product) -> tuple[User, User, Product]:
    """A seller, a buyer and one active fixed-price product priced 2000.00."""

    seller = make_user("seller")
    buyer = make_user("buyer")
    product = make_product(seller)
    return seller, buyer, product


@pytest.fixture
def coordinator(db_session: Session) -> TransitionCoordinator:
    return build_coordinator(db_session)


@pytest.fixture
def order_payload() -> Callable[..., dict]:
    """Build the checkout body for ``buyer`` purchasing ``product`` at its list price."""

    def _build(product: Product, buyer: User, **overrides) -> dict:
        payload = {
            "product_id": product.id,
            "seller_id": product.seller_id,
            "buyer_id": buyer.id,
            "quantity": 1,
            "total_amount": str(product.price),
            "shipping_cost": "0.00",
            "payment_method": "mtn_mobile_money",
            "shipping_address": "12 Rue du Marché, Kinshasa",
            "first_name": "Ada",
            "last_name": "Buyer",
            "phone": "+243810000000",
        }
        payload.update(overrides)
        return payload

    return _build
