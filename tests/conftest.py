"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async)
- In-memory Redis replacement
- Platform settings seeded with known values
- Test data factories (restaurants, products, riders, vouchers, orders)
"""
import pytest
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import patch

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.database import Base, get_db
from app.db.models.order import Order, OrderStatus, PaymentMethod
from app.db.models.platform_settings import PlatformSettings, PLATFORM_SETTINGS_ID
from app.db.models.restaurant import Product, Restaurant
from app.db.models.rider import Rider, RiderStatus, SettlementStatus
from app.db.models.voucher import DiscountType, Voucher
from app.domain.services.order_service import OrderLine, OrderService
from app.domain.services.settings_provider import PlatformConfig, reset_settings_state
from app.main import app
from app.state_machine.order_states import Actor, ActorRole


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OPERATOR = Actor(ActorRole.OPERATOR, 1)

# Round numbers so expected splits can be worked out by hand:
#   delivery fee = 40 + 20/km (capped at 200), rider gross = 40 + 20/km,
#   rider fee 10%, commission 10%, gateway 2.5% on online payments
TEST_CONFIG = PlatformConfig(
    commission_rate=Decimal("10"),
    delivery_base_fee=Decimal("40"),
    delivery_per_km_fee=Decimal("20"),
    delivery_max_fee=Decimal("200"),
    service_fee=Decimal("0"),
    tax_enabled=False,
    tax_rate=Decimal("0"),
    gateway_fee_percent=Decimal("2.5"),
    rider_base_pay=Decimal("40"),
    rider_per_km_rate=Decimal("20"),
    rider_platform_fee_percent=Decimal("10"),
    default_distance_km=4.2,
    cod_overdue_threshold=Decimal("20000"),
    minimum_order_amount=Decimal("0"),
    is_maintenance_mode=False,
    bonus_daily_target=0,
    bonus_amount=Decimal("0"),
)


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, platform_config):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Redis / settings state
# ============================================================================

class FakeRedis:
    """In-memory stand-in for Redis with the subset of the API the app uses."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self.published: list[tuple[str, str]] = []

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = value
        self._ttls[key] = ttl

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis for every test."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis), \
         patch("app.domain.services.settings_provider.get_redis", _get_fake_redis), \
         patch("app.domain.services.event_publisher.get_redis", _get_fake_redis), \
         patch("app.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake


@pytest.fixture(autouse=True)
def reset_settings():
    """Drop the last-known-good platform config between tests"""
    reset_settings_state()
    yield
    reset_settings_state()


@pytest.fixture
async def platform_config(db_session: AsyncSession) -> PlatformConfig:
    """Persist TEST_CONFIG as the platform_settings row"""
    record = PlatformSettings(id=PLATFORM_SETTINGS_ID)
    TEST_CONFIG.apply_to_record(record)
    db_session.add(record)
    await db_session.commit()
    return TEST_CONFIG


@pytest.fixture
def set_platform_config(db_session: AsyncSession, fake_redis, platform_config):
    """Change persisted settings mid-test, bypassing the operator API"""
    async def _set(**changes) -> PlatformConfig:
        record = await db_session.get(PlatformSettings, PLATFORM_SETTINGS_ID)
        updated = TEST_CONFIG.model_copy(update=changes)
        updated.apply_to_record(record)
        await db_session.commit()
        await fake_redis.delete("platform_settings:config")
        reset_settings_state()
        return updated

    return _set


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def restaurant_factory(db_session: AsyncSession):
    """Factory for creating test restaurants"""
    async def _create_restaurant(
        name: str = "Karachi Grill",
        is_approved: bool = True,
        is_active: bool = True,
        business_type: str | None = None,
        commission_rate: Decimal | None = None,
    ) -> Restaurant:
        restaurant = Restaurant(
            name=name,
            is_approved=is_approved,
            is_active=is_active,
            business_type=business_type,
            commission_rate=commission_rate,
        )
        db_session.add(restaurant)
        await db_session.commit()
        await db_session.refresh(restaurant)
        return restaurant

    return _create_restaurant


@pytest.fixture
def product_factory(db_session: AsyncSession):
    """Factory for creating menu products"""
    async def _create_product(
        restaurant_id: int,
        name: str = "Chicken Karahi",
        price: Decimal = Decimal("500"),
        stock_quantity: int | None = None,
        is_available: bool = True,
    ) -> Product:
        product = Product(
            restaurant_id=restaurant_id,
            name=name,
            price=price,
            stock_quantity=stock_quantity,
            is_available=is_available,
        )
        db_session.add(product)
        await db_session.commit()
        await db_session.refresh(product)
        return product

    return _create_product


@pytest.fixture
def rider_factory(db_session: AsyncSession):
    """Factory for creating riders"""
    async def _create_rider(
        name: str = "Test Rider",
        status: RiderStatus = RiderStatus.AVAILABLE,
        settlement_status: SettlementStatus = SettlementStatus.ACTIVE,
        is_active: bool = True,
        cod_balance: Decimal = Decimal("0"),
        earnings_balance: Decimal = Decimal("0"),
    ) -> Rider:
        rider = Rider(
            name=name,
            status=status,
            settlement_status=settlement_status,
            is_active=is_active,
            cod_balance=cod_balance,
            earnings_balance=earnings_balance,
        )
        db_session.add(rider)
        await db_session.commit()
        await db_session.refresh(rider)
        return rider

    return _create_rider


@pytest.fixture
def voucher_factory(db_session: AsyncSession):
    """Factory for creating promo codes"""
    async def _create_voucher(
        code: str = "WELCOME100",
        discount_type: DiscountType = DiscountType.FIXED,
        discount_value: Decimal = Decimal("100"),
        max_discount: Decimal | None = None,
        minimum_amount: Decimal = Decimal("0"),
        max_usage: int | None = None,
        usage_count: int = 0,
        restaurant_id: int | None = None,
        is_active: bool = True,
        expires_at=None,
    ) -> Voucher:
        voucher = Voucher(
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            max_discount=max_discount,
            minimum_amount=minimum_amount,
            max_usage=max_usage,
            usage_count=usage_count,
            restaurant_id=restaurant_id,
            is_active=is_active,
            expires_at=expires_at,
        )
        db_session.add(voucher)
        await db_session.commit()
        await db_session.refresh(voucher)
        return voucher

    return _create_voucher


@pytest.fixture
async def sample_restaurant(restaurant_factory, platform_config) -> Restaurant:
    return await restaurant_factory()


@pytest.fixture
async def sample_product(product_factory, sample_restaurant) -> Product:
    return await product_factory(restaurant_id=sample_restaurant.id)


@pytest.fixture
async def sample_rider(rider_factory) -> Rider:
    return await rider_factory()


@pytest.fixture
def order_factory(db_session: AsyncSession, sample_restaurant, sample_product):
    """
    Place an order through OrderService.

    Defaults: 2 x 500 of the sample product, 5 km, COD ->
    subtotal 1000, delivery fee 140, total 1140.
    """
    async def _create_order(
        quantity: int = 2,
        product: Product | None = None,
        payment_method: PaymentMethod = PaymentMethod.COD,
        distance_km: float | None = 5.0,
        customer_id: int = 501,
        promo_code: str | None = None,
    ) -> Order:
        product = product or sample_product
        return await OrderService(db_session).create_order(
            customer_id=customer_id,
            restaurant_id=product.restaurant_id,
            items=[OrderLine(product.id, quantity)],
            shipping_address="House 12, Street 4, Gulberg III, Lahore",
            payment_method=payment_method,
            promo_code=promo_code,
            distance_km=distance_km,
        )

    return _create_order


@pytest.fixture
def drive_order(db_session: AsyncSession):
    """Move an order from PENDING up to `until`, assigning `rider` on the way"""
    async def _drive(
        order: Order,
        rider: Rider | None = None,
        until: OrderStatus = OrderStatus.DELIVERED,
        distance_km: float | None = None,
    ) -> Order:
        service = OrderService(db_session)
        restaurant = Actor(ActorRole.RESTAURANT, order.restaurant_id)
        for step in (OrderStatus.ACCEPTED, OrderStatus.PREPARING):
            order = await service.update_status(order.id, step, restaurant)
            if step == until:
                return order
        order = await service.update_status(order.id, OrderStatus.READY, restaurant)

        if rider is not None:
            order = await service.assign_rider(order.id, rider.id, OPERATOR)
        if until == OrderStatus.READY:
            return order

        rider_actor = Actor(ActorRole.RIDER, rider.id)
        order = await service.update_status(order.id, OrderStatus.ON_THE_WAY, rider_actor)
        if until == OrderStatus.ON_THE_WAY:
            return order
        return await service.update_status(
            order.id, OrderStatus.DELIVERED, rider_actor, distance_km=distance_km
        )

    return _drive
