from storefront.models.user import User
from storefront.models.coupon import Coupon, CouponRedemption
from storefront.models.order import Order
from storefront.models.order_activity_log import OrderActivityLog
from storefront.models.order_note import OrderNote
