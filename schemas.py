"""
Database Schemas for Lojinha das Graças (multi-tenant storefront)

Each Pydantic model represents a collection in the document store. The
collection name is given in the class docstring.

Tenancy model: every shop is a store. All store-owned data (products, orders,
coupons, content) carries a store_id field, and every mutation checks it
against the caller's active store.
"""

from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    delivered = "delivered"
    cancelled = "cancelled"


class CouponType(str, Enum):
    percentage = "percentage"
    fixed = "fixed"


class Store(BaseModel):
    """
    Store registry
    Collection: "stores"
    """
    name: str = Field(..., description="Shop name")
    slug: str = Field(..., description="Subdomain / ?shop= slug")
    status: str = Field("active", description="active|inactive")


class StoreSettings(BaseModel):
    """
    Storefront settings per store
    Collection: "store_settings" (document id = store_id)
    """
    store_id: str
    store_name: str = "Nova Loja"
    whatsapp_number: str = ""
    store_email: Optional[str] = None
    primary_color: str = "#D4AF37"
    logo_url: Optional[str] = None
    hero_title: str = "Bem-vindo"
    hero_subtitle: str = "Configure sua nova loja no painel administrativo."
    hero_button_text: str = "Ver Produtos"
    hero_image_url: Optional[str] = None
    hero_banners: list[str] = Field(default_factory=list)
    pix_key: str = ""
    instagram_url: str = ""
    infinitepay_handle: str = ""
    monthly_revenue_goal: float = 0
    about_text: str = ""
    privacy_policy: str = ""
    manager_name: Optional[str] = None
    plan: str = Field("basic", description="basic|pro")
    status: str = Field("active", description="active|inactive")


class Product(BaseModel):
    """
    Products collection schema
    Collection: "products"
    """
    name: str = Field(..., description="Product name")
    description: str = Field("", description="Product description")
    price: float = Field(..., ge=0, description="Unit price (BRL)")
    promotional_price: Optional[float] = Field(None, ge=0, description="Sale price, wins over price when set")
    stock: int = Field(0, ge=0, description="Units in stock")
    category: str = Field("", description="Category label")
    image: Optional[str] = Field(None, description="Main image URL")
    images: list[str] = Field(default_factory=list)
    is_featured: bool = False
    active: bool = Field(True, description="Whether product is visible for sale")
    code: Optional[str] = None


class CartItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    quantity: int = Field(1, ge=1)
    options: Optional[dict[str, Any]] = None


class CustomerAddress(BaseModel):
    street: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None


class Order(BaseModel):
    """
    Orders collection schema
    Collection: "orders"
    Customer address is stored flattened as customer_address_<field>.
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    store_id: str
    order_number: Optional[int] = None
    customer_name: str = "Cliente"
    customer_email: str = ""
    customer_phone: str = ""
    items: list[CartItem]
    subtotal: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    coupon_code: Optional[str] = None
    total: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.pending
    payment_method: str = Field("pix", description="pix|credit|debit")
    notes: str = ""
    transaction_nsu: Optional[str] = None
    infinitepay_data: Optional[dict[str, Any]] = None
    checkout_url: Optional[str] = None


class Coupon(BaseModel):
    """
    Coupons collection schema
    Collection: "coupons"
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    code: str = Field(..., description="Human-entered code, stored upper-cased")
    type: CouponType = CouponType.fixed
    value: float = Field(..., ge=0)
    min_spend: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_count: int = Field(0, ge=0)
    expiry_date: Optional[datetime] = None
    active: bool = True


class Category(BaseModel):
    """
    Categories collection schema
    Collection: "categories"
    """
    name: str


class Review(BaseModel):
    """
    Product reviews
    Collection: "reviews"
    """
    product_id: str
    order_id: Optional[str] = None
    customer_email: str
    customer_name: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    is_verified_purchase: bool = False


class WishlistItem(BaseModel):
    """
    Wishlist entries, per browser session
    Collection: "wishlists"
    """
    session_id: str
    product_id: str
    user_email: Optional[str] = None
    notify_on_sale: bool = False
    notify_on_stock: bool = False


class BlogPost(BaseModel):
    """
    Blog posts
    Collection: "blog_posts"
    """
    title: str
    content: str
    excerpt: str = ""
    author: str = ""
    image: Optional[str] = None
    category: str = ""
    is_featured: bool = False
    is_published: bool = True


class WaitingListEntry(BaseModel):
    """
    Back-in-stock waiting list
    Collection: "waiting_list"
    """
    product_id: str
    product_name: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    notified: bool = False


class NewsletterSubscription(BaseModel):
    """
    Newsletter subscribers
    Collection: "newsletters"
    """
    email: str
    active: bool = True


class AdminUser(BaseModel):
    """
    Admin users for a store
    Collection: "admins"
    """
    store_id: str
    email: str
    password_hash: str
    role: str = Field("owner", description="owner|staff|superadmin")


class Cart(BaseModel):
    """
    Server-side cart per browser session
    Collection: "carts"
    """
    session_id: str
    items: list[CartItem] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    coupon_discount: float = Field(0, ge=0)


# Request payloads shared by routes and services

class CheckoutItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    options: Optional[dict[str, Any]] = None


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem] = Field(..., min_length=1)
    customer_name: str = "Cliente"
    customer_email: str = ""
    customer_phone: str = ""
    customer_address: Optional[CustomerAddress] = None
    coupon_code: Optional[str] = None
    payment_method: str = "pix"
    notes: str = ""


class CustomerData(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[CustomerAddress] = None
    transaction_nsu: Optional[str] = None
    infinitepay_data: Optional[dict[str, Any]] = None


COLLECTIONS: dict[str, type[BaseModel]] = {
    "stores": Store,
    "store_settings": StoreSettings,
    "products": Product,
    "orders": Order,
    "coupons": Coupon,
    "categories": Category,
    "reviews": Review,
    "wishlists": WishlistItem,
    "blog_posts": BlogPost,
    "waiting_list": WaitingListEntry,
    "newsletters": NewsletterSubscription,
    "admins": AdminUser,
    "carts": Cart,
}
