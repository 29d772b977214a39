#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from storefront.data.models.product import ProductModel
from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.order import OrderModel
from storefront.data.models.order_line import OrderLineModel

__all__ = ["ProductModel", "CartModel", "CartItemModel", "OrderModel", "OrderLineModel"]
