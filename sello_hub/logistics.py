"""Courier rate card and calibration from shipping history.

The sales importer records a ``ShipmentLog`` for every single-unit order
that names a logistics service. Calibration groups those logs by service,
takes the median postage as the service's rate and the largest carton
that went out with it as the parcel limits.
"""

from __future__ import annotations

import logging
import statistics
from collections import defaultdict

from .models import HubState, LogisticsRule

logger = logging.getLogger("sello.logistics")

AUTO_CARRIER = "Auto-Detected"

# (id, name, carrier) for the ERP's logistics codes; rates start at zero
_DEFAULT_SERVICES = [
    ("evri", "EVRI", "Evri"),
    ("its-dx-z", "ITS-DX-Z", "DX"),
    ("its-dx", "ITS-DX", "DX"),
    ("its-rmt48", "ITS-RMT48", "Royal Mail"),
    ("xdp-econ", "XDP-ECON", "XDP"),
    ("xdp-econ-z", "XDP-ECON-Z", "XDP"),
    ("yodel-48-mini-ni", "YODEL-48-MINI-NI", "Yodel"),
    ("fba", "FBA", "Amazon"),
    ("na", "NA", "Other"),
    ("yodel-48-mini-uk", "YODEL-48-MINI-UK", "Yodel"),
    ("its-rmt48-z", "ITS-RMT48-Z", "Royal Mail"),
    ("its", "ITS", "ITS"),
    ("its-dpd", "ITS-DPD", "DPD"),
    ("pickup", "PICKUP", "Collection"),
    ("xdp-2man", "XDP-2MAN", "XDP"),
    ("yodel-48-lrg-uk", "YODEL-48-LRG-UK", "Yodel"),
    ("yodel-48-lrg-uk-z", "YODEL-48-LRG-UK-Z", "Yodel"),
    ("yodel-48-med-ni", "YODEL-48-MED-NI", "Yodel"),
    ("yodel-48-med-uk", "YODEL-48-MED-UK", "Yodel"),
]


def default_logistics_rules() -> list[LogisticsRule]:
    return [LogisticsRule(id=i, name=name, carrier=carrier) for i, name, carrier in _DEFAULT_SERVICES]


def _limit(value: float) -> float | None:
    return round(value, 2) if value > 0 else None


def calibrate_logistics(state: HubState) -> int:
    """Set each shipped service's rate to the median observed postage.

    Logs for SKUs not in the catalogue are ignored. Services are matched
    to rules by name, case-insensitively; a service with no rule gets a
    new ``Auto-Detected`` one. Carton limits only replace existing ones
    when a carton weight or length was seen. Returns the number of rules
    updated or created.

    Raises:
        ValueError: If there is no shipping history.
    """
    if not state.shipment_history:
        raise ValueError(
            "No shipping history found. Import a sales report with a logistics "
            "service column first."
        )

    products = {p.sku: p for p in state.products}
    costs: dict[str, list[float]] = defaultdict(list)
    max_weight: dict[str, float] = defaultdict(float)
    max_length: dict[str, float] = defaultdict(float)
    for log in state.shipment_history:
        product = products.get(log.sku)
        if product is None:
            continue
        service = log.service.upper()
        costs[service].append(log.cost)
        carton = product.carton_dimensions
        if carton is not None:
            max_weight[service] = max(max_weight[service], carton.weight)
            max_length[service] = max(max_length[service], carton.length)

    rules = {r.name.strip().upper(): r for r in state.logistics_rules}
    changed = 0
    for service, observed in costs.items():
        price = round(statistics.median(observed), 2)
        weight = _limit(max_weight[service])
        length = _limit(max_length[service])

        rule = rules.get(service)
        if rule is None:
            rule = LogisticsRule(
                id="auto-" + service.lower().replace(" ", "-"),
                name=service,
                carrier=AUTO_CARRIER,
                price=price,
                max_weight=weight,
                max_length=length,
            )
            state.logistics_rules.append(rule)
            rules[service] = rule
        else:
            rule.price = price
            rule.max_weight = weight or rule.max_weight
            rule.max_length = length or rule.max_length
        changed += 1

    logger.info(
        "Logistics calibrated: %d services from %d shipments",
        changed,
        len(state.shipment_history),
    )
    return changed
