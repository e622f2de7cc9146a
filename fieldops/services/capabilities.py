"""
The domain capabilities the host application asks for by name.

Each capability is backed by one sync entity. In remote mode the `live` ones
are served by the API (transactional data); everything else is served from the
local cache that the Sync Coordinator keeps filled.
"""

from dataclasses import dataclass
from typing import Optional

from fieldops.sync.entities import SyncEntity, get_entity


@dataclass(frozen=True)
class Capability:
    name: str
    entity_type: Optional[str]        # None for capabilities that span entities
    live: bool = False                # remote mode: API-backed instead of cache-backed

    @property
    def entity(self) -> Optional[SyncEntity]:
        return get_entity(self.entity_type) if self.entity_type else None


SEARCH = "search"

CAPABILITIES: list[Capability] = [
    # Transactional: live against the server in remote mode
    Capability("jobs", "jobs", live=True),
    Capability("customers", "customers", live=True),
    Capability("time_entries", "time_entries", live=True),
    Capability("estimates", "estimates", live=True),
    Capability("invoices", "invoices", live=True),
    Capability("expenses", "expenses", live=True),
    # Reference-ish: always read from the local cache
    Capability("calendar", "calendar_events"),
    Capability("documents", "documents"),
    Capability("assets", "assets"),
    Capability("sites", "sites"),
    Capability("companies", "companies"),
    Capability("employees", "employees"),
    Capability("notes", "quick_notes"),
    Capability("inventory", "inventory"),
    Capability("products", "products"),
    Capability("suppliers", "suppliers"),
    Capability("service_agreements", "service_agreements"),
    Capability("service_history", "service_history"),
    Capability("material_lists", "material_lists"),
    Capability("dropdowns", "dropdown_options"),
    Capability(SEARCH, None),
]

_BY_NAME = {c.name: c for c in CAPABILITIES}


def get_capability(name: str) -> Optional[Capability]:
    return _BY_NAME.get(name)
