"""
Pydantic Models - marketplace service records and their lean cart projections.

ServiceItem is the full record as the backend delivers it. The lean
projections are what a cart line item keeps in persistent storage: one
variant per service type, tagged by ``kind``, each carrying only the fields
needed to redisplay a cart row and recompute its price.
"""

from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
)


# ============================================================
# Service types
# ============================================================

SERVICE_TYPE_CATERING = "catering"
SERVICE_TYPE_PARTY_RENTALS = "party-rentals"
SERVICE_TYPE_STAFF = "staff"
SERVICE_TYPE_VENUES = "venues"

# Older records use the marketplace tab names
SERVICE_TYPE_ALIASES = {
    "party_rentals": SERVICE_TYPE_PARTY_RENTALS,
    "events_staff": SERVICE_TYPE_STAFF,
    "venue": SERVICE_TYPE_VENUES,
}


def normalize_service_type(service_type: Optional[str]) -> Optional[str]:
    """Map legacy type tags onto the canonical ones."""
    if service_type is None:
        return None
    return SERVICE_TYPE_ALIASES.get(service_type, service_type)


Price = Optional[Union[float, str]]


# ============================================================
# Full service record
# ============================================================

class ServiceItem(BaseModel):
    """Marketplace service as stored by the backend.

    Unknown fields are kept so a record can be re-pruned later. A service
    rehydrated from the cart is the lean projection, so everything but
    ``id`` may be missing.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)

    id: str
    name: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    price: Price = None
    price_type: Optional[str] = None
    image: Optional[str] = None
    additional_images: Optional[list[str]] = None
    status: Optional[str] = None
    active: Optional[bool] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = Field(default=None, alias="vendorName")
    service_details: Optional[dict[str, Any]] = None


# ============================================================
# Lean detail records
# ============================================================

# Optional fields of the lean records. Identity (id) and the union tag (kind)
# are validated strictly.
_LENIENT_FIELDS = (
    "name",
    "description",
    "type",
    "price",
    "price_type",
    "status",
    "active",
    "vendor_id",
    "vendor_name",
    "image",
    "category",
    "is_premium",
    "additional_charge",
    "is_combo",
    "combo_categories",
    "max_selections",
    "selection_behavior",
    "items",
    "minimum_hours",
    "menu_items",
    "rental_items",
    "staff_services",
    "venue_options",
)


class _LenientModel(BaseModel):
    """Lean record whose optional fields tolerate sloppy vendor data.

    A value that does not parse is dropped (the field falls back to None)
    instead of failing the whole record; bad entries of a list are skipped.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)

    @field_validator(*_LENIENT_FIELDS, mode="wrap", check_fields=False)
    @classmethod
    def _drop_unparsable(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        try:
            return handler(value)
        except ValidationError:
            if isinstance(value, list):
                kept = [entry for entry in value if isinstance(entry, Mapping)]
                try:
                    return handler(kept)
                except ValidationError:
                    pass
            return None


class LeanItem(_LenientModel):
    """Common fields of every lean sub-item."""

    id: Optional[str] = None
    name: Optional[str] = None
    price: Price = None
    price_type: Optional[str] = Field(default=None, alias="priceType")

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class LeanComboItem(LeanItem):
    is_premium: Optional[bool] = Field(default=None, alias="isPremium")
    additional_charge: Optional[float] = Field(default=None, alias="additionalCharge")


class LeanComboCategory(_LenientModel):
    """Combo category reference; its items are kept one level deep only."""

    id: Optional[str] = None
    name: Optional[str] = None
    max_selections: Optional[int] = Field(default=None, alias="maxSelections")
    selection_behavior: Optional[str] = Field(default=None, alias="selectionBehavior")
    items: list[LeanComboItem] = Field(default_factory=list)


class LeanMenuItem(LeanItem):
    category: Optional[str] = None
    is_combo: Optional[bool] = Field(default=None, alias="isCombo")
    combo_categories: Optional[list[LeanComboCategory]] = Field(default=None, alias="comboCategories")


class LeanRentalItem(LeanItem):
    category: Optional[str] = None


class LeanStaffService(LeanItem):
    minimum_hours: Optional[float] = Field(default=None, alias="minimumHours")


class LeanVenueOption(LeanItem):
    pass


# ============================================================
# Lean service projections (tagged by kind)
# ============================================================

class _CartServiceBase(_LenientModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    price: Price = None
    status: Optional[str] = None
    active: Optional[bool] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = Field(default=None, alias="vendorName")
    image: Optional[str] = None

    def _details_for_storage(self) -> dict:
        return {}

    def to_storage(self) -> dict:
        """Wire form: base fields plus a ``service_details`` block when non-empty."""
        data = self.model_dump(
            by_alias=True,
            exclude_none=True,
            include=set(_CartServiceBase.model_fields),
        )
        details = self._details_for_storage()
        if details:
            data["service_details"] = details
        return data


class GenericCartService(_CartServiceBase):
    kind: Literal["generic"] = "generic"


class CateringCartService(_CartServiceBase):
    kind: Literal["catering"] = "catering"
    menu_items: list[LeanMenuItem] = Field(default_factory=list)

    def _details_for_storage(self) -> dict:
        if not self.menu_items:
            return {}
        return {"catering": {"menuItems": [item.to_storage() for item in self.menu_items]}}


class PartyRentalCartService(_CartServiceBase):
    kind: Literal["party-rentals"] = "party-rentals"
    rental_items: list[LeanRentalItem] = Field(default_factory=list)

    def _details_for_storage(self) -> dict:
        if not self.rental_items:
            return {}
        return {"rentalItems": [item.to_storage() for item in self.rental_items]}


class StaffCartService(_CartServiceBase):
    kind: Literal["staff"] = "staff"
    staff_services: list[LeanStaffService] = Field(default_factory=list)

    def _details_for_storage(self) -> dict:
        if not self.staff_services:
            return {}
        return {"staffServices": [item.to_storage() for item in self.staff_services]}


class VenueCartService(_CartServiceBase):
    kind: Literal["venues"] = "venues"
    venue_options: list[LeanVenueOption] = Field(default_factory=list)

    def _details_for_storage(self) -> dict:
        if not self.venue_options:
            return {}
        return {"venueOptions": [item.to_storage() for item in self.venue_options]}


CartService = Annotated[
    Union[
        GenericCartService,
        CateringCartService,
        PartyRentalCartService,
        StaffCartService,
        VenueCartService,
    ],
    Field(discriminator="kind"),
]

cart_service_adapter = TypeAdapter(CartService)
