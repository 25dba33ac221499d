# API routers; mounted in tinkertank.main
from . import (
    admin as admin,
    admin_bookings as admin_bookings,
    calendar as calendar,
    cart as cart,
    health as health,
    orders as orders,
    stripe_webhooks as stripe_webhooks,
)
