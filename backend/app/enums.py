"""
枚举类型定义模块

定义订餐、券账本、自动下单相关的所有枚举类型。

所有枚举都继承自 str 和 Enum，既可以直接当字符串写入数据库（String 列），
又能在代码里获得类型约束。取值与客户端、数据库中保存的字符串保持一致（大写）。
"""
from enum import Enum


class UserRole(str, Enum):
    """
    用户角色

    - CUSTOMER: 顾客
    - KITCHEN_STAFF: 厨房员工（只能操作自己厨房的订单）
    - DRIVER: 配送员
    - ADMIN: 管理员
    """
    CUSTOMER = "CUSTOMER"
    KITCHEN_STAFF = "KITCHEN_STAFF"
    DRIVER = "DRIVER"
    ADMIN = "ADMIN"


class MealWindow(str, Enum):
    """
    餐段

    每个餐段有独立的截单时间。
    """
    LUNCH = "LUNCH"
    DINNER = "DINNER"


class VoucherMealType(str, Enum):
    """
    券可用餐段

    - ANY: 午餐晚餐都可用
    - LUNCH: 仅午餐
    - DINNER: 仅晚餐
    """
    ANY = "ANY"
    LUNCH = "LUNCH"
    DINNER = "DINNER"


class DefaultMealType(str, Enum):
    """订阅的自动下单餐段偏好"""
    LUNCH = "LUNCH"
    DINNER = "DINNER"
    BOTH = "BOTH"


class VoucherStatus(str, Enum):
    """
    券状态

    - AVAILABLE: 可用
    - REDEEMED: 已核销（绑定到某个订单）
    - RESTORED: 已退回（取消/拒单/支付失败后退回，可再次使用）
    - EXPIRED: 已过期（由维护任务批量标记）
    - CANCELLED: 已作废

    AVAILABLE 和 RESTORED 都算"可花费"，但还要满足 expiry_date > now。
    """
    AVAILABLE = "AVAILABLE"
    REDEEMED = "REDEEMED"
    RESTORED = "RESTORED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class RestorationReason(str, Enum):
    """券退回原因"""
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_REJECTED = "ORDER_REJECTED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    ADMIN_ACTION = "ADMIN_ACTION"
    OTHER = "OTHER"


class SubscriptionStatus(str, Enum):
    """
    订阅状态

    - PENDING: 待支付（支付成功后激活并发券）
    - ACTIVE: 生效中
    - EXPIRED: 已过期
    - CANCELLED: 已取消
    - PAUSED: 已暂停
    """
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    PAUSED = "PAUSED"


class OrderStatus(str, Enum):
    """
    订单状态

    状态流转见 app.services.order_state.TRANSITIONS。
    PLACED 是唯一初始状态；DELIVERED、REJECTED、CANCELLED、FAILED 是终态。
    """
    PLACED = "PLACED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    PREPARING = "PREPARING"
    READY = "READY"
    PICKED_UP = "PICKED_UP"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class PaymentStatus(str, Enum):
    """订单支付状态"""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class PaymentMethod(str, Enum):
    """
    支付方式

    VOUCHER_ONLY 表示整单由券覆盖，无需支付。
    """
    UPI = "UPI"
    CARD = "CARD"
    WALLET = "WALLET"
    NETBANKING = "NETBANKING"
    VOUCHER_ONLY = "VOUCHER_ONLY"
    OTHER = "OTHER"


class MenuType(str, Enum):
    """
    菜单类型

    - MEAL_MENU: 餐段套餐菜单（可用券）
    - ON_DEMAND_MENU: 随点菜单（不可用券）
    """
    MEAL_MENU = "MEAL_MENU"
    ON_DEMAND_MENU = "ON_DEMAND_MENU"


class MenuItemCategory(str, Enum):
    """菜品分类，只有 MAIN_COURSE 能被券覆盖"""
    MAIN_COURSE = "MAIN_COURSE"
    ADDON = "ADDON"


class OrderActor(str, Enum):
    """订单状态变更的发起方"""
    CUSTOMER = "CUSTOMER"
    KITCHEN = "KITCHEN"
    DRIVER = "DRIVER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class KitchenStatus(str, Enum):
    """厨房状态"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class ZoneStatus(str, Enum):
    """配送区域状态"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class RefundStatus(str, Enum):
    """退款状态（执行由外部支付服务负责，本服务只写 PENDING）"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AutoOrderStatus(str, Enum):
    """自动下单结果"""
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class FailureCategory(str, Enum):
    """
    自动下单失败/跳过分类

    SUBSCRIPTION_PAUSED 和 SLOT_SKIPPED 属于跳过，不通知用户。
    """
    NO_VOUCHERS = "NO_VOUCHERS"
    NO_ADDRESS = "NO_ADDRESS"
    NO_ZONE = "NO_ZONE"
    NO_KITCHEN = "NO_KITCHEN"
    KITCHEN_NOT_SERVING_ZONE = "KITCHEN_NOT_SERVING_ZONE"
    NO_MENU_ITEM = "NO_MENU_ITEM"
    VOUCHER_REDEMPTION_FAILED = "VOUCHER_REDEMPTION_FAILED"
    ORDER_CREATION_FAILED = "ORDER_CREATION_FAILED"
    SUBSCRIPTION_PAUSED = "SUBSCRIPTION_PAUSED"
    SLOT_SKIPPED = "SLOT_SKIPPED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    UNKNOWN = "UNKNOWN"


class NotificationEvent(str, Enum):
    """通知事件类型，模板文案由外部投递服务维护"""
    AUTO_ORDER_SUCCESS = "AUTO_ORDER_SUCCESS"
    AUTO_ORDER_FAILED_NO_VOUCHERS = "AUTO_ORDER_FAILED_NO_VOUCHERS"
    AUTO_ORDER_FAILED_NO_ADDRESS = "AUTO_ORDER_FAILED_NO_ADDRESS"
    AUTO_ORDER_FAILED_NO_ZONE = "AUTO_ORDER_FAILED_NO_ZONE"
    AUTO_ORDER_FAILED_NO_KITCHEN = "AUTO_ORDER_FAILED_NO_KITCHEN"
    AUTO_ORDER_FAILED_NO_MENU = "AUTO_ORDER_FAILED_NO_MENU"
    AUTO_ORDER_FAILED_GENERIC = "AUTO_ORDER_FAILED_GENERIC"
    NEW_AUTO_ORDER = "NEW_AUTO_ORDER"
    NEW_AUTO_ACCEPTED_ORDER = "NEW_AUTO_ACCEPTED_ORDER"
    NEW_MANUAL_ORDER = "NEW_MANUAL_ORDER"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_REJECTED = "ORDER_REJECTED"
