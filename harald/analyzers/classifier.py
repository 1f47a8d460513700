"""
Device Classifier
==================

Turns advertisement data into a :class:`DeviceClass` and an estimated
Bluetooth version tier.

Classification precedence (first match wins):

1. Manufacturer company identifier (first two payload bytes, little-endian).
2. Advertised service UUIDs, in the order of ``SERVICE_CLASSES``.
3. Case-insensitive keyword groups matched against the device name.
4. ``unknown``.

Version estimation is a three-tier heuristic, not a protocol
negotiation: a service list plus a TX power above
:attr:`DeviceClassifier.TX_POWER_THRESHOLD` suggests 5.0, a service list
alone suggests 4.0, and no LE fields at all means classic 2.1.

References:
    - Bluetooth SIG. (2023). Assigned Numbers. Section 7.1: Company
      Identifiers; Section 3.4: GATT Services.
"""

from __future__ import annotations

from typing import Iterable, Optional

from harald.core.models import (
    Advertisement,
    Characteristic,
    DeviceClass,
    MANUFACTURER_CLASSES,
    NAME_KEYWORD_GROUPS,
    RadioVersion,
    SERVICE_CLASSES,
    Service,
    normalize_uuid,
)


class DeviceClassifier:
    """Stateless device classifier.

    Usage::

        classifier = DeviceClassifier()
        device_class = classifier.classify(advertisement)
        version = classifier.estimate_version(advertisement)
    """

    TX_POWER_THRESHOLD: int = 10

    def classify(self, advertisement: Advertisement) -> DeviceClass:
        """Classify an advertisement using the fixed rule precedence."""
        by_vendor = self.classify_manufacturer(advertisement.manufacturer_id)
        if by_vendor is not None:
            return by_vendor

        if advertisement.service_uuids:
            by_service = self.classify_services(advertisement.service_uuids)
            if by_service is not None:
                return by_service

        return self.classify_name(advertisement.name)

    @staticmethod
    def classify_manufacturer(company_id: Optional[int]) -> Optional[DeviceClass]:
        if company_id is None:
            return None
        return MANUFACTURER_CLASSES.get(company_id)

    @staticmethod
    def classify_services(uuids: Iterable[str]) -> Optional[DeviceClass]:
        """Return the class of the first ``SERVICE_CLASSES`` entry present
        in *uuids*, or ``None``."""
        advertised = {normalize_uuid(u) for u in uuids}
        for uuid, device_class in SERVICE_CLASSES:
            if uuid in advertised:
                return device_class
        return None

    @staticmethod
    def classify_name(name: Optional[str]) -> DeviceClass:
        if not name:
            return DeviceClass.UNKNOWN
        lowered = name.lower()
        for keywords, device_class in NAME_KEYWORD_GROUPS:
            if any(keyword in lowered for keyword in keywords):
                return device_class
        return DeviceClass.UNKNOWN

    def estimate_version(self, advertisement: Advertisement) -> RadioVersion:
        if advertisement.service_uuids is not None:
            tx_power = advertisement.tx_power
            if tx_power is not None and tx_power > self.TX_POWER_THRESHOLD:
                return RadioVersion.V5_0
            return RadioVersion.V4_0
        return RadioVersion.V2_1

    @staticmethod
    def resolve_services(
        uuids: Iterable[str],
        characteristics: Optional[dict[str, list[Characteristic]]] = None,
    ) -> list[Service]:
        """Build :class:`Service` records for *uuids*, dropping duplicates
        while keeping first-seen order."""
        characteristics = characteristics or {}
        seen: set[str] = set()
        services: list[Service] = []
        for uuid in uuids:
            key = normalize_uuid(uuid)
            if key in seen:
                continue
            seen.add(key)
            services.append(Service.from_uuid(uuid, characteristics.get(uuid)))
        return services
