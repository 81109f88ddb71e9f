"""地址 / 区域 / 厨房 / 菜品只读查询（下单校验和自动下单共用）"""
from sqlalchemy import or_
from sqlmodel import Session, col, select

from app.enums import KitchenStatus, MealWindow, MenuItemCategory, MenuType, ZoneStatus
from app.models import CustomerAddress, Kitchen, KitchenZone, MenuItem, Subscription, Zone


def get_address(*, session: Session, address_id: int, user_id: int) -> CustomerAddress | None:
    """按 ID 获取用户自己的、未删除的地址"""
    return session.exec(
        select(CustomerAddress).where(
            CustomerAddress.id == address_id,
            CustomerAddress.user_id == user_id,
            CustomerAddress.is_deleted == False,  # noqa: E712
        )
    ).first()


def resolve_address(*, session: Session, subscription: Subscription) -> CustomerAddress | None:
    """订阅默认地址 -> 用户标记的默认地址 -> 任意未删除地址"""
    if subscription.default_address_id:
        address = get_address(
            session=session,
            address_id=subscription.default_address_id,
            user_id=subscription.user_id,
        )
        if address:
            return address

    base = select(CustomerAddress).where(
        CustomerAddress.user_id == subscription.user_id,
        CustomerAddress.is_deleted == False,  # noqa: E712
    )
    address = session.exec(
        base.where(CustomerAddress.is_default == True)  # noqa: E712
        .order_by(CustomerAddress.created_at)
    ).first()
    if address:
        return address
    return session.exec(base.order_by(CustomerAddress.created_at)).first()


def resolve_zone(*, session: Session, address: CustomerAddress) -> Zone | None:
    """地址上有 zone_id 用 zone_id，否则按邮编查"""
    if address.zone_id:
        zone = session.get(Zone, address.zone_id)
        if zone:
            return zone
    return session.exec(select(Zone).where(Zone.pincode == address.pincode)).first()


def is_zone_serviceable(zone: Zone) -> bool:
    return zone.status == ZoneStatus.ACTIVE and zone.ordering_enabled


def is_kitchen_open(kitchen: Kitchen) -> bool:
    return kitchen.status == KitchenStatus.ACTIVE and kitchen.is_accepting_orders


def kitchen_serves_zone(*, session: Session, kitchen_id: int, zone_id: int) -> bool:
    link = session.exec(
        select(KitchenZone).where(
            KitchenZone.kitchen_id == kitchen_id, KitchenZone.zone_id == zone_id
        )
    ).first()
    return link is not None


def resolve_kitchen(
    *, session: Session, zone_id: int, preferred_kitchen_id: int | None = None
) -> Kitchen | None:
    """
    指定的默认厨房仍然覆盖该区域且在营业接单就用它，
    否则取覆盖该区域、营业接单中、创建最早的厨房
    """
    if preferred_kitchen_id:
        kitchen = session.get(Kitchen, preferred_kitchen_id)
        if (
            kitchen
            and is_kitchen_open(kitchen)
            and kitchen_serves_zone(session=session, kitchen_id=kitchen.id, zone_id=zone_id)
        ):
            return kitchen

    return session.exec(
        select(Kitchen)
        .join(KitchenZone, col(KitchenZone.kitchen_id) == col(Kitchen.id))
        .where(
            KitchenZone.zone_id == zone_id,
            Kitchen.status == KitchenStatus.ACTIVE.value,
            Kitchen.is_accepting_orders == True,  # noqa: E712
        )
        .order_by(Kitchen.created_at, Kitchen.id)
    ).first()


def resolve_menu_item(
    *, session: Session, kitchen_id: int, meal_window: MealWindow
) -> MenuItem | None:
    """优先名字含 thali / standard 或主菜分类的餐段菜品，否则该餐段任意可售菜品"""
    base = select(MenuItem).where(
        MenuItem.kitchen_id == kitchen_id,
        MenuItem.menu_type == MenuType.MEAL_MENU.value,
        MenuItem.meal_window == MealWindow(meal_window).value,
        MenuItem.is_available == True,  # noqa: E712
    )
    preferred = session.exec(
        base.where(
            or_(
                col(MenuItem.name).ilike("%thali%"),
                col(MenuItem.name).ilike("%standard%"),
                MenuItem.category == MenuItemCategory.MAIN_COURSE.value,
            )
        ).order_by(MenuItem.created_at, MenuItem.id)
    ).first()
    if preferred:
        return preferred
    return session.exec(base.order_by(MenuItem.created_at, MenuItem.id)).first()
