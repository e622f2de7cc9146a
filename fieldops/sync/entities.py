"""
What gets synchronised, and in which order.

SYNC_ENTITIES is pulled top to bottom, so every parent lands in the cache
before the rows that reference it. Line items travel inside their estimate or
invoice payload under "lines".
"""

from dataclasses import dataclass, field

from fieldops.models.customers import Company, Customer, Site, Employee, Asset
from fieldops.models.work import (
    Job, TimeEntry, CalendarEvent, QuickNote, Document,
    ServiceAgreement, ServiceHistoryRecord, MaterialList,
)
from fieldops.models.billing import (
    Supplier, Product, InventoryItem, DropdownOption,
    Estimate, EstimateLine, Invoice, InvoiceLine, Expense,
)


@dataclass(frozen=True)
class SyncEntity:
    entity_type: str          # local name, also the queue's entity_type
    model: type
    resource: str             # /api/<resource>
    children: dict = field(default_factory=dict)   # payload key -> (model, parent fk)

    def __hash__(self):
        return hash(self.entity_type)


SYNC_ENTITIES: list[SyncEntity] = [
    SyncEntity("companies", Company, "companies"),
    SyncEntity("customers", Customer, "customers"),
    SyncEntity("sites", Site, "sites"),
    SyncEntity("employees", Employee, "employees"),
    SyncEntity("assets", Asset, "assets"),
    SyncEntity("suppliers", Supplier, "suppliers"),
    SyncEntity("products", Product, "products"),
    SyncEntity("inventory", InventoryItem, "inventory"),
    SyncEntity("jobs", Job, "jobs"),
    SyncEntity("estimates", Estimate, "estimates", {"lines": (EstimateLine, "estimate_id")}),
    SyncEntity("invoices", Invoice, "invoices", {"lines": (InvoiceLine, "invoice_id")}),
    SyncEntity("expenses", Expense, "expenses"),
    SyncEntity("quick_notes", QuickNote, "notes"),
    SyncEntity("documents", Document, "documents"),
    SyncEntity("time_entries", TimeEntry, "timeentries"),
    SyncEntity("service_agreements", ServiceAgreement, "serviceagreements"),
    SyncEntity("service_history", ServiceHistoryRecord, "servicehistory"),
    SyncEntity("material_lists", MaterialList, "materiallists"),
    SyncEntity("calendar_events", CalendarEvent, "calendarevents"),
    SyncEntity("dropdown_options", DropdownOption, "dropdownoptions"),
]

_BY_TYPE = {e.entity_type: e for e in SYNC_ENTITIES}


def get_entity(entity_type: str) -> SyncEntity:
    try:
        return _BY_TYPE[entity_type]
    except KeyError:
        raise KeyError(f"Unknown sync entity: {entity_type}") from None


def entity_for_model(model) -> SyncEntity:
    for entity in SYNC_ENTITIES:
        if entity.model is model:
            return entity
    raise KeyError(f"{model.__name__} is not a sync entity")
