from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from core.models import EXTERNAL_ID

INSERT = "INSERT"
UPDATE = "UPDATE"
SKIP = "SKIP"

ExistingLookup = Callable[[List[str]], Dict[str, Dict]]


@dataclass
class ReconciliationDecision:
    key: Optional[str]
    action: str
    incoming: Dict
    existing: Optional[Dict] = None


@dataclass
class ReconciliationPlan:
    decisions: List[ReconciliationDecision] = field(default_factory=list)
    merged_duplicates: int = 0

    def _count(self, action: str) -> int:
        return sum(1 for d in self.decisions if d.action == action)

    @property
    def inserts(self) -> int:
        return self._count(INSERT)

    @property
    def updates(self) -> int:
        return self._count(UPDATE)

    @property
    def skips(self) -> int:
        return self._count(SKIP)

    @property
    def writes(self) -> List[ReconciliationDecision]:
        return [d for d in self.decisions if d.action != SKIP]


def external_id(record: Dict) -> Optional[str]:
    """Return the dedup key of a record, or None when it has no usable one."""
    value = record.get(EXTERNAL_ID)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _comparable(value):
    # MongoDB keeps millisecond precision and returns naive UTC datetimes.
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return value.replace(microsecond=value.microsecond // 1000 * 1000)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return value


def transactions_equal(existing: Dict, incoming: Dict) -> bool:
    """True when every field present in ``incoming`` holds the same value in ``existing``."""
    for key, value in incoming.items():
        if key == "_id":
            continue
        if key not in existing:
            return False
        if _comparable(existing[key]) != _comparable(value):
            return False
    return True


def reconcile(batch: Iterable[Dict], existing_lookup: ExistingLookup) -> ReconciliationPlan:
    """Classify each record of a batch as INSERT, UPDATE or SKIP.

    ``existing_lookup`` is called once with every distinct external ID of the
    batch and returns the persisted snapshots keyed by ID. Records sharing an
    external ID collapse into a single decision carrying the last-seen values.
    """
    records = []
    for record in batch:
        key = external_id(record)
        if key is not None and record.get(EXTERNAL_ID) != key:
            record = {**record, EXTERNAL_ID: key}
        records.append((key, record))

    unique_keys = list(dict.fromkeys(key for key, _ in records if key is not None))
    persisted = existing_lookup(unique_keys) if unique_keys else {}

    plan = ReconciliationPlan()
    by_key: Dict[str, ReconciliationDecision] = {}
    views: Dict[str, Dict] = {}

    for key, record in records:
        if key is None:
            plan.decisions.append(ReconciliationDecision(None, INSERT, dict(record)))
            continue

        decision = by_key.get(key)
        if decision is None:
            existing = persisted.get(key)
            if existing is None:
                decision = ReconciliationDecision(key, INSERT, dict(record))
                views[key] = dict(record)
            elif transactions_equal(existing, record):
                decision = ReconciliationDecision(key, SKIP, dict(record), existing)
                views[key] = dict(existing)
            else:
                decision = ReconciliationDecision(key, UPDATE, dict(record), existing)
                views[key] = {**existing, **record}
            by_key[key] = decision
            plan.decisions.append(decision)
            continue

        # Same ID seen earlier in this batch: fold into the existing decision.
        plan.merged_duplicates += 1
        if transactions_equal(views[key], record):
            continue

        if decision.action == INSERT:
            decision.incoming = dict(record)
            views[key] = dict(record)
        elif decision.action == SKIP:
            decision.action = UPDATE
            decision.incoming = dict(record)
            views[key] = {**views[key], **record}
        else:
            decision.incoming = {**decision.incoming, **record}
            views[key] = {**views[key], **record}

    for decision in plan.decisions:
        if decision.action == UPDATE and transactions_equal(decision.existing, decision.incoming):
            decision.action = SKIP

    return plan
