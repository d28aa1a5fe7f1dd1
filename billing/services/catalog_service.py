from __future__ import annotations

from typing import Any, Dict, List, Optional

from billing.models.common import aed_to_fils
from billing.models.service import ServiceType
from billing.storage.store import JsonBillingStore


class CatalogService:
    """
    Service types (typing + government charges).
    - Prices accepted as fils (``*_fils`` ints) or AED amounts ("18,50", 18.5)
    - Inactive services stay readable but are hidden from ``list_services(active_only=True)``
    """

    def __init__(self, store: JsonBillingStore) -> None:
        self.store = store

    @staticmethod
    def _parse_price_to_fils(payload: Dict[str, Any], prefix: str) -> int:
        """
        Accepts:
          - <prefix>_fils (int)
          - <prefix> / <prefix>_aed (str/float, ex "18,50" -> 1850)
        Returns an int >= 0
        """
        v = payload.get(f"{prefix}_fils")
        if v not in (None, ""):
            return max(0, int(v))
        for k in (prefix, f"{prefix}_aed"):
            v = payload.get(k)
            if v not in (None, ""):
                return max(0, aed_to_fils(v))
        return 0

    def _from_payload(self, payload: Dict[str, Any]) -> ServiceType:
        data = dict(payload)
        data["typing_charge_fils"] = self._parse_price_to_fils(payload, "typing_charge")
        data["government_charge_fils"] = self._parse_price_to_fils(payload, "government_charge")
        return ServiceType.model_validate(data)

    def add_service(self, s: ServiceType | Dict[str, Any]) -> ServiceType:
        service = s if isinstance(s, ServiceType) else self._from_payload(s)
        return self.store.add_service(service)

    def update_service(self, service_id: str, changes: Dict[str, Any]) -> ServiceType:
        current = self.store.get_service(service_id).model_dump()
        payload = {**current, **changes, "id": service_id}
        for prefix in ("typing_charge", "government_charge"):
            if prefix in changes or f"{prefix}_aed" in changes:
                payload.pop(f"{prefix}_fils", None)
        return self.store.update_service(self._from_payload(payload))

    def get_service(self, service_id: str) -> ServiceType:
        return self.store.get_service(service_id)

    def list_services(self, active_only: bool = False, category: Optional[str] = None) -> List[ServiceType]:
        return [
            s for s in self.store.list_services()
            if (not active_only or s.active) and (category is None or s.category == category)
        ]

    def delete_service(self, service_id: str) -> bool:
        return self.store.delete_service(service_id)
