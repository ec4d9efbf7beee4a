from models.users import User
from models.orders import Order
from models.order_items import OrderItem
from models.products import Product
from models.inventory_changes import InventoryChange
from models.delivery_partners import DeliveryPartner

__all__ = ["User", "Order", "OrderItem", "Product", "InventoryChange", "DeliveryPartner"]
