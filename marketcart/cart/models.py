"""Cart line item models and their storage form."""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from marketcart import config
from marketcart.errors import CorruptPersistedDataError
from marketcart.logging import get_logger
from marketcart.models import ServiceItem
from .pruner import pruned_storage_form

logger = get_logger(__name__)

ITEM_TTL = timedelta(hours=config.CART_ITEM_TTL_HOURS)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        # JavaScript clients write a trailing Z
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def clean_selections(selections: Optional[Mapping[str, Any]]) -> dict[str, int]:
    """
    Normalize a sub-item selection map.

    Keys become strings, values integers. Negative, non-finite or non-numeric
    quantities are dropped. Zero is kept: a touched-but-zeroed selection is preserved.
    """
    if not selections:
        return {}
    cleaned: dict[str, int] = {}
    for key, value in selections.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
            logger.warning(f"Dropping invalid selection quantity for {key!r}: {value!r}")
            continue
        cleaned[str(key)] = int(value)
    return cleaned


@dataclass(frozen=True)
class CartLineItem:
    """One service in the cart plus its sub-item selections.

    Frozen: a mutation produces a new line item, so observers can compare
    line items by identity.
    """
    service: ServiceItem
    added_at: datetime
    expires_at: datetime
    selected_items: dict[str, int] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        service: ServiceItem,
        selected_items: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> "CartLineItem":
        """New line item with a fixed expiry of ``now + ITEM_TTL``."""
        now = now or utcnow()
        return cls(
            service=service,
            added_at=now,
            expires_at=now + ITEM_TTL,
            selected_items=clean_selections(selected_items),
        )

    @property
    def service_id(self) -> str:
        return self.service.id

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class OptimizedCartItem:
    """Storage form of a CartLineItem: pruned service, ISO timestamps."""
    service: dict
    added_at: str
    expires_at: str
    selected_items: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_line_item(cls, item: CartLineItem) -> "OptimizedCartItem":
        return cls(
            service=pruned_storage_form(item.service),
            added_at=item.added_at.isoformat(),
            expires_at=item.expires_at.isoformat(),
            selected_items=dict(item.selected_items),
        )

    def to_dict(self) -> dict:
        """Wire form (camelCase keys, shared with browser clients)."""
        return {
            "service": self.service,
            "addedAt": self.added_at,
            "expiresAt": self.expires_at,
            "selectedItems": self.selected_items,
        }

    @classmethod
    def from_dict(cls, data: Any, key: str = config.CART_STORAGE_KEY) -> "OptimizedCartItem":
        """
        Parse one persisted entry.

        Entries written before expiry was stored get ``addedAt + ITEM_TTL``.

        Raises:
            CorruptPersistedDataError: If the entry cannot be understood
        """
        if not isinstance(data, Mapping):
            raise CorruptPersistedDataError(key, "cart entry is not an object")
        service = data.get("service")
        if not isinstance(service, Mapping) or not service.get("id"):
            raise CorruptPersistedDataError(key, "cart entry has no service id")
        try:
            added_at = parse_timestamp(data["addedAt"])
            raw_expiry = data.get("expiresAt")
            expires_at = parse_timestamp(raw_expiry) if raw_expiry else added_at + ITEM_TTL
        except (KeyError, ValueError, TypeError, OverflowError) as e:
            raise CorruptPersistedDataError(key, f"bad timestamp: {e}") from e
        selected = data.get("selectedItems") or {}
        if not isinstance(selected, Mapping):
            raise CorruptPersistedDataError(key, "selectedItems is not an object")
        return cls(
            service=dict(service),
            added_at=added_at.isoformat(),
            expires_at=expires_at.isoformat(),
            selected_items=clean_selections(selected),
        )

    def to_line_item(self) -> CartLineItem:
        """Rehydrate; the service is partial (lean projection) by design."""
        try:
            service = ServiceItem.model_validate(self.service)
        except ValidationError as e:
            raise CorruptPersistedDataError(config.CART_STORAGE_KEY, f"invalid service: {e}") from e
        return CartLineItem(
            service=service,
            added_at=parse_timestamp(self.added_at),
            expires_at=parse_timestamp(self.expires_at),
            selected_items=dict(self.selected_items),
        )
