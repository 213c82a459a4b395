"""
Service Pruner - lean projection of a marketplace service for cart storage.

The projection keeps identity, display and pricing fields plus a shallow,
type-specific list of sub-items. Descriptions, galleries, dietary flags and
analytics fields of the sub-items are dropped, so the size of a stored line
item does not grow with the richness of the vendor's listing.
"""
from typing import Any, Mapping, Union

from marketcart.models import (
    SERVICE_TYPE_CATERING,
    SERVICE_TYPE_PARTY_RENTALS,
    SERVICE_TYPE_STAFF,
    SERVICE_TYPE_VENUES,
    CartService,
    ServiceItem,
    cart_service_adapter,
    normalize_service_type,
)

_BASE_FIELDS = (
    "id",
    "name",
    "description",
    "type",
    "price",
    "status",
    "active",
    "vendor_id",
    "vendor_name",
    "image",
)


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _dicts(value: Any) -> list[dict]:
    return [item for item in _as_list(value) if isinstance(item, Mapping)]


def _detail_fields(service_type: str | None, details: Mapping[str, Any]) -> dict:
    """Type-specific lean lists, keyed by the projection's field name."""
    if service_type == SERVICE_TYPE_CATERING:
        catering = details.get("catering")
        if isinstance(catering, Mapping) and catering.get("menuItems") is not None:
            return {"menu_items": _dicts(catering["menuItems"])}
    elif service_type == SERVICE_TYPE_PARTY_RENTALS:
        if details.get("rentalItems") is not None:
            return {"rental_items": _dicts(details["rentalItems"])}
    elif service_type == SERVICE_TYPE_STAFF:
        if details.get("staffServices") is not None:
            return {"staff_services": _dicts(details["staffServices"])}
    elif service_type == SERVICE_TYPE_VENUES:
        if details.get("venueOptions") is not None:
            return {"venue_options": _dicts(details["venueOptions"])}
    return {}


_KINDS = {
    SERVICE_TYPE_CATERING,
    SERVICE_TYPE_PARTY_RENTALS,
    SERVICE_TYPE_STAFF,
    SERVICE_TYPE_VENUES,
}


def prune_service_for_storage(service: Union[ServiceItem, Mapping[str, Any]]) -> CartService:
    """
    Build the lean cart projection of a service.

    Pure and deterministic: the same record always yields an equal projection,
    and pruning an already-pruned record returns an equal projection.

    Args:
        service: Full service record (model or raw mapping)

    Returns:
        One of the CartService variants, chosen by the service type
    """
    if not isinstance(service, ServiceItem):
        service = ServiceItem.model_validate(service)

    service_type = normalize_service_type(service.type)
    payload: dict[str, Any] = {name: getattr(service, name) for name in _BASE_FIELDS}
    payload["kind"] = service_type if service_type in _KINDS else "generic"

    if service.service_details:
        payload.update(_detail_fields(service_type, service.service_details))

    return cart_service_adapter.validate_python(payload)


def pruned_storage_form(service: Union[ServiceItem, Mapping[str, Any]]) -> dict:
    """Prune and serialize in one step (the persisted ``service`` value)."""
    return prune_service_for_storage(service).to_storage()
