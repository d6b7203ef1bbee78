"""
Top-level models import shim for the Orders app.

    from apps.orders.models import Order

works while the models live in separate modules.
"""

from .order import *          # Order
from .item import *           # OrderItem
from .timeline import *       # OrderTimeline
