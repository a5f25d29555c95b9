"""
Database Schemas

MongoDB collections are described with Pydantic models. Each class name is
lowercased for the collection name (Customer -> "customer",
WalletTransaction -> "wallet_transaction").

References to other documents are stored as string ids.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

OrderStatus = Literal["pending", "processing", "paid", "cancelled", "refunded", "failed"]
DeviceType = Literal["mobile", "web"]
PopupDevice = Literal["all", "mobile", "desktop"]


class Customer(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hashed password")
    status: bool = True
    ip_address: Optional[str] = None


class FeaturePermission(BaseModel):
    feature: str
    create: bool = False
    read: bool = False
    update: bool = False
    delete: bool = False


class Role(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    permissions: List[FeaturePermission] = Field(default_factory=list)
    status: bool = True
    created_by: Optional[str] = Field(None, description="Reference to admin _id")


class Admin(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    first_name: str = ""
    last_name: str = ""
    password_hash: str
    role_id: Optional[str] = Field(None, description="Reference to role _id")
    status: bool = True


class Category(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    status: bool = True
    sort_order: int = Field(0, ge=0)


class Option(BaseModel):
    """A downloadable file format, e.g. DST or PES"""
    name: str = Field(..., min_length=1, max_length=100)
    sort_order: int = Field(0, ge=0)


class ProductOption(BaseModel):
    id: str
    option_id: str
    price: float = Field(0, ge=0)
    file_path: str = Field(..., min_length=1, description="File path is required for digital products")
    download_count: int = Field(0, ge=0)


class Product(BaseModel):
    product_model: str = Field(..., min_length=1, max_length=255)
    sku: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    stitches: Optional[str] = Field(None, max_length=100)
    dimensions: Optional[str] = Field(None, max_length=100)
    colour_needles: Optional[str] = Field(None, max_length=100)
    categories: List[str] = Field(default_factory=list)
    options: List[ProductOption] = Field(default_factory=list)
    image: Optional[str] = None
    meta_keywords: Optional[str] = None
    status: bool = True
    sort_order: int = Field(0, ge=0)
    viewed: int = Field(0, ge=0)
    sales_count: int = Field(0, ge=0)


class LineOption(BaseModel):
    """Product option as captured in a cart or order"""
    id: str
    option_id: str
    price: float = Field(0, ge=0)


class CartItem(BaseModel):
    id: str
    product_id: str
    options: List[LineOption] = Field(default_factory=list)
    subtotal: float = Field(0, ge=0)


class Cart(BaseModel):
    customer_id: str
    items: List[CartItem] = Field(default_factory=list)


class OrderProduct(BaseModel):
    product_id: str
    options: List[LineOption] = Field(default_factory=list)


class OrderTotal(BaseModel):
    code: Literal["total", "subtotal", "couponDiscount"]
    value: float = Field(..., ge=0)
    sort_order: int = 0


class OrderHistory(BaseModel):
    order_status: OrderStatus = "pending"
    comment: str = Field("", max_length=1000)


class Order(BaseModel):
    order_number: str
    customer_id: str
    products: List[OrderProduct]
    order_total: float = Field(..., ge=0)
    totals: List[OrderTotal] = Field(default_factory=list)
    order_status: OrderStatus = "pending"
    payment_method: Optional[str] = None
    payment_code: Optional[str] = None
    payment_first_name: str = ""
    payment_last_name: str = ""
    payment_company: str = ""
    payment_address1: str = ""
    payment_address2: str = ""
    payment_city: str = ""
    payment_postcode: str = ""
    payment_country: str = ""
    payment_zone: str = ""
    history: List[OrderHistory] = Field(default_factory=list)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class Wishlist(BaseModel):
    customer_id: str
    items: List[dict] = Field(default_factory=list, description="[{product_id, added_at}]")


class Review(BaseModel):
    product_id: str
    customer_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
    status: bool = True


class Wallet(BaseModel):
    customer_id: str
    balance: float = Field(0, ge=0)
    currency: str = "INR"
    is_active: bool = True


class WalletTransaction(BaseModel):
    wallet_id: str
    customer_id: str
    amount: float
    type: Literal["CREDIT", "DEBIT"]
    description: Optional[str] = None
    reference_id: Optional[str] = None
    status: Literal["PENDING", "COMPLETED", "FAILED"] = "COMPLETED"


class BannerImage(BaseModel):
    id: str
    image: str = Field(..., min_length=1, max_length=500)
    status: bool = True


class Banner(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    device_type: DeviceType
    images: List[BannerImage] = Field(default_factory=list)
    sort_order: int = Field(0, ge=0)


class PopupButton(BaseModel):
    id: str
    text: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=500)
    style: Literal["primary", "secondary", "outline", "link"] = "primary"
    icon: Optional[str] = None


class Popup(BaseModel):
    """Storefront popup; at most one is active at a time"""
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    image: Optional[str] = None
    buttons: List[PopupButton] = Field(default_factory=list)
    status: bool = False
    display_frequency: Literal["once", "always"] = "once"
    sort_order: int = 0
    device_type: PopupDevice = "all"


class SearchLog(BaseModel):
    search_term: str
    customer_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    results_count: int = 0
    search_time_ms: int = 0


class AuditLog(BaseModel):
    admin_id: Optional[str] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
