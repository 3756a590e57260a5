"""
Service Inventory Reconciler: upserts an agent's observed services.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List

from sentra_hub.models import ServiceRecord
from sentra_hub.store import Store, utcnow
from sentra_log import get_logger

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    processed: int
    skipped: int


def _text(value: Any):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class ServiceInventory:
    """
    Merges reports on (agent, service name). A service missing from one
    report keeps its last known record.
    """

    def __init__(self, store: Store):
        self.store = store

    def reconcile(self, agent_id: int, entries: Iterable[Any]) -> ReconcileResult:
        processed = skipped = 0
        observed_at = utcnow()

        for entry in entries:
            if not isinstance(entry, dict):
                skipped += 1
                continue

            name = _text(entry.get('name') or entry.get('service_name'))
            if not name:
                skipped += 1
                continue

            self.store.upsert_service(ServiceRecord(
                agent_id=agent_id,
                service_name=name,
                display_name=_text(entry.get('display_name') or entry.get('displayName')),
                status=_text(entry.get('status')),
                last_updated=observed_at
            ))
            processed += 1

        if skipped:
            logger.warning(
                "Skipped malformed service entries",
                extra={'context': {'agent_id': agent_id, 'skipped': skipped}}
            )
        return ReconcileResult(processed=processed, skipped=skipped)

    def services_for_agent(self, agent_id: int) -> List[ServiceRecord]:
        return self.store.services_for_agent(agent_id)

    def services_for_owner(self, owner_id: int) -> List[dict]:
        return self.store.list_services(owner_id)
