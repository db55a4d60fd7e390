"""
Schemas for the remote response shapes consumed by this package.

Both upstreams are parsed defensively: missing or null numeric fields become 0,
missing strings become a documented default, unknown fields are ignored.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _number_or_zero(value: Any) -> Any:
    return 0 if value is None or value == "" else value


def _text_or_empty(value: Any) -> Any:
    return "" if value is None else value


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RetailPriceItem(_WireModel):
    """One item of an Azure Retail Prices page."""
    currency_code: str = Field("USD", alias="currencyCode")
    retail_price: float = Field(0.0, alias="retailPrice")
    unit_price: float = Field(0.0, alias="unitPrice")
    arm_region_name: str = Field("", alias="armRegionName")
    location: str = ""
    meter_name: str = Field("", alias="meterName")
    product_name: str = Field("", alias="productName")
    sku_name: str = Field("", alias="skuName")
    arm_sku_name: str = Field("", alias="armSkuName")
    service_name: str = Field("", alias="serviceName")
    service_family: str = Field("", alias="serviceFamily")
    unit_of_measure: str = Field("", alias="unitOfMeasure")
    price_type: str = Field("", alias="type")

    @field_validator("retail_price", "unit_price", mode="before")
    @classmethod
    def _default_numbers(cls, value: Any) -> Any:
        return _number_or_zero(value)

    @field_validator(
        "arm_region_name", "location", "meter_name", "product_name", "sku_name",
        "arm_sku_name", "service_name", "service_family", "unit_of_measure", "price_type",
        mode="before"
    )
    @classmethod
    def _default_strings(cls, value: Any) -> Any:
        return _text_or_empty(value)

    @field_validator("currency_code", mode="before")
    @classmethod
    def _default_currency(cls, value: Any) -> Any:
        return value or "USD"


class RetailPricePage(_WireModel):
    """One page of the Azure Retail Prices API."""
    items: List[RetailPriceItem] = Field(default_factory=list, alias="Items")
    next_page_link: Optional[str] = Field(None, alias="NextPageLink")
    billing_currency: Optional[str] = Field(None, alias="BillingCurrency")
    count: int = Field(0, alias="Count")

    @field_validator("items", mode="before")
    @classmethod
    def _default_items(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("count", mode="before")
    @classmethod
    def _default_count(cls, value: Any) -> Any:
        return _number_or_zero(value)


class UsageName(_WireModel):
    value: str = ""
    localized_value: str = Field("", alias="localizedValue")


class UsageItem(_WireModel):
    """One ARM usage record (limit/currentValue pair)."""
    limit: float = 0
    current_value: float = Field(0, alias="currentValue")
    unit: str = "Count"
    name: Optional[UsageName] = None

    @field_validator("limit", "current_value", mode="before")
    @classmethod
    def _default_numbers(cls, value: Any) -> Any:
        return _number_or_zero(value)

    @field_validator("unit", mode="before")
    @classmethod
    def _default_unit(cls, value: Any) -> Any:
        return value or "Count"


class UsagePage(_WireModel):
    """Response of a ``.../locations/{region}/usages`` call."""
    value: List[UsageItem] = Field(default_factory=list)
    next_link: Optional[str] = Field(None, alias="nextLink")

    @field_validator("value", mode="before")
    @classmethod
    def _default_value(cls, value: Any) -> Any:
        return [] if value is None else value
