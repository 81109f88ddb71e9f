from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, delete, select

from app.api.deps import get_business_config, get_db
from app.core.security import create_access_token
from app.crud.vouchers import issue_vouchers
from app.enums import (
    DefaultMealType,
    MealWindow,
    MenuItemCategory,
    MenuType,
    UserRole,
    VoucherMealType,
)
from app.main import app
from app.models import (
    AutoOrderLog,
    CustomerAddress,
    Kitchen,
    KitchenZone,
    MenuItem,
    Order,
    OrderStatusEvent,
    Refund,
    Subscription,
    User,
    Voucher,
    Zone,
)
from app.services.config_service import BusinessConfig

IST = ZoneInfo("Asia/Kolkata")

# Every module that reads the clock through its own `utc_now` import.
CLOCK_MODULES = (
    "app.crud.vouchers",
    "app.services.cutoff",
    "app.services.cancellation",
    "app.services.order_state",
    "app.services.order_service",
    "app.services.auto_order_service",
)


def ist(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    """Business-local wall time as an aware UTC datetime."""
    return datetime(year, month, day, hour, minute, tzinfo=IST).astimezone(timezone.utc)


class FakeRedis:
    """Just enough of redis.Redis for notifications and the batch lock."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, str]]] = []
        self.store: dict[str, str] = {}
        self.fail_xadd = False

    def xadd(self, name: str, fields: dict[str, str]) -> str:
        if self.fail_xadd:
            raise ConnectionError("redis unavailable")
        self.messages.append((name, fields))
        return f"{len(self.messages)}-0"

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def get(self, key: str) -> str | None:
        return self.store.get(key)

    def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def eval(self, script: str, numkeys: int, key: str, value: str) -> int:
        if self.store.get(key) == value:
            return self.delete(key)
        return 0

    def ping(self) -> bool:
        return True

    def events(self, target: str | None = None) -> list[str]:
        return [
            fields["event_type"]
            for _, fields in self.messages
            if target is None or fields["target"] == target
        ]


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)

    def at(self, hour: int, minute: int = 0, day: int = 19) -> datetime:
        """Move to an IST wall time in October 2026 and return it."""
        self.now = ist(2026, 10, day, hour, minute)
        return self.now


class Factory:
    def __init__(self, session: Session, clock: FrozenClock) -> None:
        self.session = session
        self.clock = clock
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def user(self, role: UserRole = UserRole.CUSTOMER, kitchen_id: int | None = None) -> User:
        n = self._next()
        return self._save(
            User(phone=f"+9190000{n:05d}", name=f"user {n}", role=role, kitchen_id=kitchen_id)
        )

    def zone(self, pincode: str = "560001", **kwargs) -> Zone:
        return self._save(Zone(pincode=pincode, name=kwargs.pop("name", f"Zone {pincode}"), **kwargs))

    def kitchen(self, zones: list[Zone] = (), **kwargs) -> Kitchen:
        n = self._next()
        kitchen = self._save(Kitchen(name=kwargs.pop("name", f"Kitchen {n}"), **kwargs))
        for zone in zones:
            self.session.add(KitchenZone(kitchen_id=kitchen.id, zone_id=zone.id))
        self.session.commit()
        return kitchen

    def menu_item(
        self,
        kitchen: Kitchen,
        name: str = "Veg Thali",
        meal_window: MealWindow | None = MealWindow.LUNCH,
        price: str = "120.00",
        category: MenuItemCategory = MenuItemCategory.MAIN_COURSE,
        menu_type: MenuType = MenuType.MEAL_MENU,
        **kwargs,
    ) -> MenuItem:
        return self._save(
            MenuItem(
                kitchen_id=kitchen.id,
                name=name,
                meal_window=meal_window,
                price=Decimal(price),
                category=category,
                menu_type=menu_type,
                **kwargs,
            )
        )

    def address(self, user: User, zone: Zone | None = None, pincode: str = "560001", **kwargs) -> CustomerAddress:
        return self._save(
            CustomerAddress(
                user_id=user.id,
                address_line=kwargs.pop("address_line", "12 MG Road"),
                city=kwargs.pop("city", "Bengaluru"),
                pincode=zone.pincode if zone else pincode,
                zone_id=zone.id if zone else None,
                **kwargs,
            )
        )

    def subscription(
        self,
        user: User,
        vouchers: int = 5,
        expires_in: timedelta = timedelta(days=30),
        meal_type: VoucherMealType = VoucherMealType.ANY,
        issue: bool = True,
        **kwargs,
    ) -> Subscription:
        kwargs.setdefault("default_meal_type", DefaultMealType.BOTH)
        subscription = self._save(
            Subscription(
                user_id=user.id,
                plan_name="Monthly",
                total_vouchers_issued=vouchers,
                voucher_expiry_date=self.clock.now + expires_in,
                **kwargs,
            )
        )
        if issue:
            issue_vouchers(session=self.session, subscription=subscription, meal_type=meal_type)
        self.session.refresh(subscription)
        return subscription

    def serviceable_customer(self, pincode: str = "560001", vouchers: int = 5, **sub_kwargs):
        """Customer + address + zone + kitchen + lunch/dinner thali + subscription."""
        zone = self.session.exec(select(Zone).where(Zone.pincode == pincode)).first() or self.zone(pincode)
        kitchen = self.kitchen(zones=[zone])
        lunch = self.menu_item(kitchen, name="Veg Thali", meal_window=MealWindow.LUNCH)
        dinner = self.menu_item(kitchen, name="Dinner Thali", meal_window=MealWindow.DINNER)
        user = self.user()
        address = self.address(user, zone=zone, is_default=True)
        subscription = self.subscription(user, vouchers=vouchers, **sub_kwargs)
        return user, address, kitchen, lunch, dinner, subscription

    def vouchers(self, user: User) -> list[Voucher]:
        self.session.expire_all()
        return list(
            self.session.exec(
                select(Voucher).where(Voucher.user_id == user.id).order_by(Voucher.expiry_date, Voucher.id)
            ).all()
        )


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        for model in (
            OrderStatusEvent,
            Refund,
            AutoOrderLog,
            Voucher,
            Order,
            MenuItem,
            KitchenZone,
            CustomerAddress,
            Subscription,
            Kitchen,
            Zone,
            User,
        ):
            session.exec(delete(model))
        session.commit()


@pytest.fixture(scope="function")
def config() -> BusinessConfig:
    return BusinessConfig(timezone="Asia/Kolkata")


@pytest.fixture(scope="function")
def clock(monkeypatch) -> FrozenClock:
    # Monday 10:00 IST, one hour before lunch cutoff.
    frozen = FrozenClock(ist(2026, 10, 19, 10, 0))
    for module in CLOCK_MODULES:
        monkeypatch.setattr(f"{module}.utc_now", frozen)
    return frozen


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    fake = FakeRedis()
    monkeypatch.setattr("app.services.notification_service.get_redis", lambda: fake)
    monkeypatch.setattr("app.core.redis.get_redis", lambda: fake)
    return fake


@pytest.fixture(scope="function")
def factory(db, clock) -> Factory:
    return Factory(db, clock)


@pytest.fixture(scope="function")
def client(engine, config) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_business_config] = lambda: config
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def auth_headers():
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, timedelta(hours=1))
        return {"Authorization": f"Bearer {token}"}

    return _headers
