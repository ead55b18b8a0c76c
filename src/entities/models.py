from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from common.errors import DecodeError


class Record(BaseModel):
    """Base for backend rows: unknown columns are ignored, known ones are typed."""

    model_config = ConfigDict(extra="ignore")

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> Any:
        # Some tables use integer keys
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v


class AgeGroup(Record):
    label: str
    value: str
    sort_order: int = 0


class PageContent(Record):
    page_key: str
    section_key: str
    content_type: str = "text"
    content_value: Optional[str] = None
    display_order: int = 0
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Testimonial(Record):
    parent_name: str
    student_info: str = ""
    testimonial_text: str
    rating: int = Field(default=5, ge=1, le=5)
    image_url: Optional[str] = None
    program_slug: Optional[str] = None
    is_featured: bool = False
    is_active: bool = True
    display_order: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CreditCardConfig(BaseModel):
    provider: Literal["iyzico"] = "iyzico"
    api_key: str = ""
    secret_key: str = ""
    base_url: str = ""


class BankTransferConfig(BaseModel):
    bank_name: str = ""
    account_holder: str = ""
    iban: str = ""
    instructions: str = ""


class IyzilinkConfig(BaseModel):
    instructions: str = ""


PaymentConfig = Union[CreditCardConfig, BankTransferConfig, IyzilinkConfig]

_CONFIG_MODELS: Dict[str, Type[BaseModel]] = {
    "credit_card": CreditCardConfig,
    "bank_transfer": BankTransferConfig,
    "iyzilink": IyzilinkConfig,
}


class PaymentMethod(Record):
    payment_method: Literal["credit_card", "bank_transfer", "iyzilink"]
    is_active: bool = False
    config: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def typed_config(self) -> PaymentConfig:
        """Decode `config` with the schema belonging to `payment_method`."""
        model = _CONFIG_MODELS[self.payment_method]
        try:
            return model.model_validate(self.config)  # type: ignore[return-value]
        except ValidationError as ve:
            raise DecodeError(f"Invalid {self.payment_method} config: {ve}") from ve


class GeneralSettings(Record):
    site_name: str = ""
    site_url: str = ""
    site_description: str = ""
    contact_email: str = ""
    support_email: str = ""
    timezone: str = "Europe/Istanbul"
    language: str = "tr"
    maintenance_mode_active: bool = False
    coupon_enabled: bool = True
    invoice_enabled: bool = True
    show_prices_with_vat: bool = True
    courses_external_url: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Program(Record):
    slug: str
    title: str
    price: float = 0.0
    description: Optional[str] = None
    image_url: Optional[str] = None
    age_group: Optional[str] = None
    status: Optional[Literal["active", "passive", "draft"]] = None
    featured: bool = False
    iyzilink: Optional[str] = None
    sendpulse_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_from_json(cls, v: Any) -> Any:
        # Older rows store metadata as a JSON string
        if isinstance(v, str):
            try:
                return json.loads(v) if v.strip() else None
            except ValueError:
                raise ValueError("metadata is not valid JSON")
        return v


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    FAILED = "failed"


class Order(Record):
    """
    Purchase record. `program_*` fields are a snapshot taken at purchase time
    so history does not depend on the program row staying unchanged.
    `sendpulse_*` fields describe notification delivery and are optional.
    """

    status: str = "pending"
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[str] = None
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    customer_type: Optional[Literal["individual", "corporate"]] = None
    tc_no: Optional[str] = None
    company_name: Optional[str] = None
    tax_office: Optional[str] = None
    tax_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    program_id: Optional[str] = None
    program_slug: Optional[str] = None
    program_title: Optional[str] = None
    program_price: float = 0.0
    subtotal: Optional[float] = None
    tax_amount: Optional[float] = None
    total_amount: float = 0.0
    currency: str = "TRY"
    installment: Optional[int] = None
    card_name: Optional[str] = None
    card_last_four: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    sendpulse_sent: Optional[bool] = None
    sendpulse_sent_at: Optional[str] = None
    sendpulse_error: Optional[str] = None


R = TypeVar("R", bound=BaseModel)


def decode_record(model: Type[R], raw: Any) -> R:
    """Decode one row; a single-element list (write representation) is unwrapped."""
    if isinstance(raw, list):
        if not raw:
            raise DecodeError(f"Expected one {model.__name__} row, got none")
        raw = raw[0]
    try:
        return model.model_validate(raw)
    except ValidationError as ve:
        raise DecodeError(f"Failed to decode {model.__name__}: {ve}") from ve


def decode_records(model: Type[R], raw: Any) -> List[R]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise DecodeError(f"Expected a list of {model.__name__} rows")
    try:
        return [model.model_validate(item) for item in raw]
    except ValidationError as ve:
        raise DecodeError(f"Failed to decode {model.__name__} list: {ve}") from ve


__all__ = [
    "Record",
    "AgeGroup",
    "PageContent",
    "Testimonial",
    "PaymentMethod",
    "CreditCardConfig",
    "BankTransferConfig",
    "IyzilinkConfig",
    "GeneralSettings",
    "Program",
    "PaymentStatus",
    "Order",
    "decode_record",
    "decode_records",
]
