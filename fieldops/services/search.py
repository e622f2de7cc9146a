"""
Global search over the local store / synced cache.

Same implementation in both modes: remote mode searches whatever the Sync
Coordinator has pulled, so results never wait on the network.
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import sessionmaker

from fieldops.models.customers import Customer, Site, Asset, Company
from fieldops.models.work import Job
from fieldops.models.billing import Estimate, Invoice, Product
from fieldops.storage.database import get_db

logger = logging.getLogger(__name__)

# (entity_type, model, searched columns, title column, subtitle column)
SEARCH_TARGETS = [
    ("customers", Customer, ("name", "primary_email", "primary_phone", "address"), "name", "address"),
    ("companies", Company, ("name", "email", "phone"), "name", "city"),
    ("jobs", Job, ("job_number", "title", "description"), "title", "job_number"),
    ("sites", Site, ("name", "address", "city"), "name", "address"),
    ("assets", Asset, ("name", "serial_number", "model_number", "brand"), "name", "serial_number"),
    ("estimates", Estimate, ("estimate_number", "title"), "estimate_number", "title"),
    ("invoices", Invoice, ("invoice_number",), "invoice_number", "status"),
    ("products", Product, ("name", "sku", "category"), "name", "sku"),
]


class SearchService:
    variant = "local"

    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory

    def __repr__(self):
        return "<SearchService>"

    def search(self, query: str, limit: int = 20, entity_types: Optional[list[str]] = None) -> list[dict]:
        term = (query or "").strip()
        if len(term) < 2:
            return []

        pattern = f"%{term}%"
        results = []
        with get_db(self._factory) as db:
            for entity_type, model, columns, title_col, subtitle_col in SEARCH_TARGETS:
                if entity_types and entity_type not in entity_types:
                    continue
                table = model.__table__.columns
                q = db.query(model).filter(or_(*(table[c].ilike(pattern) for c in columns)))
                if "is_archived" in table:
                    q = q.filter(table["is_archived"].is_(False))
                for obj in q.limit(limit).all():
                    subtitle = getattr(obj, subtitle_col, None)
                    results.append({
                        "entity_type": entity_type,
                        "id": obj.id,
                        "title": getattr(obj, title_col, None) or "",
                        "subtitle": getattr(subtitle, "value", subtitle) or "",
                    })
                if len(results) >= limit:
                    break

        logger.debug("Search %r: %d result(s)", term, len(results[:limit]))
        return results[:limit]
