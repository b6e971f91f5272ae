# backend/leadqual/services/lead_store.py
"""
Record store for leads.

Wraps the `leads` table behind read / list / insert / update operations and
publishes a change event after every committed write. Subscribers pick a
scope (one lead id or the whole table) and an event filter
(INSERT, UPDATE or * for both); each event carries the full post-write record.

Updates are field-level. The store rejects writes to contact and
store-managed fields, status moves that go backwards, and an end timestamp
on a call that never started.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import sessionmaker

from leadqual.database import SessionLocal, get_db_context, safe_commit
from leadqual.models.lead import (
    CONTACT_FIELDS,
    DATETIME_FIELDS,
    LIFECYCLE_FIELDS,
    QUALIFICATION_FIELDS,
    STORE_MANAGED_FIELDS,
    Lead,
    LeadStatus,
    can_transition,
    lead_to_dict,
)
from leadqual.utils.logger import logger


class LeadStoreError(Exception):
    """Base error for record store operations."""


class LeadNotFound(LeadStoreError):
    pass


class InvalidFieldUpdate(LeadStoreError):
    pass


class InvalidStatusTransition(LeadStoreError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move lead status from {current} to {requested}")
        self.current = current
        self.requested = requested


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


ANY_EVENT = "*"

UPDATABLE_FIELDS = LIFECYCLE_FIELDS | QUALIFICATION_FIELDS


@dataclass
class LeadChange:
    type: ChangeType
    record: Dict[str, Any]

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.type.value, "record": self.record}


ChangeCallback = Callable[[LeadChange], Union[Awaitable[None], None]]


@dataclass
class Subscription:
    callback: ChangeCallback
    lead_id: Optional[str] = None
    event: str = ANY_EVENT
    _store: Optional["LeadStore"] = field(default=None, repr=False)

    def matches(self, change: LeadChange) -> bool:
        if self.event != ANY_EVENT and self.event != change.type.value:
            return False
        if self.lead_id is not None and self.lead_id != change.record.get("id"):
            return False
        return True

    def unsubscribe(self) -> None:
        if self._store is not None:
            self._store._remove(self)
            self._store = None


class LeadStore:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal
        self._subscriptions: List[Subscription] = []

    # -----------------------------
    # Reads
    # -----------------------------
    async def get(self, lead_id: str) -> Optional[Dict[str, Any]]:
        with get_db_context(self._session_factory) as db:
            lead = db.get(Lead, lead_id)
            return lead_to_dict(lead) if lead else None

    async def require(self, lead_id: str) -> Dict[str, Any]:
        lead = await self.get(lead_id)
        if lead is None:
            raise LeadNotFound(f"Lead {lead_id} not found")
        return lead

    async def list(
        self,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        with get_db_context(self._session_factory) as db:
            q = db.query(Lead)
            if status:
                q = q.filter(Lead.status == LeadStatus(status).value)
            leads = q.order_by(Lead.created_at.desc()).offset(skip).limit(limit).all()
            return [lead_to_dict(lead) for lead in leads]

    # -----------------------------
    # Writes
    # -----------------------------
    async def insert(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        missing = [f for f in ("name", "email", "phone") if not fields.get(f)]
        if missing:
            raise InvalidFieldUpdate(f"Missing required fields: {', '.join(missing)}")

        unknown = set(fields) - CONTACT_FIELDS - {"status"}
        if unknown:
            raise InvalidFieldUpdate(f"Fields not accepted on insert: {', '.join(sorted(unknown))}")

        status = LeadStatus(fields.get("status") or LeadStatus.NEW)
        if status != LeadStatus.NEW:
            raise InvalidFieldUpdate("New leads must start with status 'new'")

        with get_db_context(self._session_factory) as db:
            lead = Lead(
                name=fields["name"],
                surname=fields.get("surname") or "",
                email=fields["email"],
                phone=fields["phone"],
                website=fields.get("website"),
                status=status.value,
            )
            db.add(lead)
            ok, error = safe_commit(db, "insert lead")
            if not ok:
                raise LeadStoreError(error)
            db.refresh(lead)
            record = lead_to_dict(lead)

        logger.info(f"Lead created: id={record['id']}")
        await self._publish(LeadChange(ChangeType.INSERT, record))
        return record

    async def update(self, lead_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if not fields:
            raise InvalidFieldUpdate("No fields to update")

        forbidden = set(fields) & (CONTACT_FIELDS | STORE_MANAGED_FIELDS)
        if forbidden:
            raise InvalidFieldUpdate(f"Fields are immutable: {', '.join(sorted(forbidden))}")

        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidFieldUpdate(f"Unknown lead fields: {', '.join(sorted(unknown))}")

        values = dict(fields)
        for name in DATETIME_FIELDS & set(values):
            values[name] = _coerce_datetime(name, values[name])

        with get_db_context(self._session_factory) as db:
            lead = db.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFound(f"Lead {lead_id} not found")

            if "status" in values:
                try:
                    requested = LeadStatus(values["status"])
                except ValueError:
                    raise InvalidFieldUpdate(f"Unknown lead status: {values['status']}")
                if not can_transition(LeadStatus(lead.status), requested):
                    raise InvalidStatusTransition(lead.status, requested.value)
                values["status"] = requested.value

            if values.get("call_ended_at") is not None:
                started = values.get("call_started_at") or lead.call_started_at
                if started is None:
                    raise InvalidFieldUpdate("call_ended_at requires call_started_at to be set")

            for name, value in values.items():
                setattr(lead, name, value)

            ok, error = safe_commit(db, f"update lead {lead_id}")
            if not ok:
                raise LeadStoreError(error)
            db.refresh(lead)
            record = lead_to_dict(lead)

        logger.debug(f"Lead updated: id={lead_id} fields={sorted(values)}")
        await self._publish(LeadChange(ChangeType.UPDATE, record))
        return record

    # -----------------------------
    # Subscriptions
    # -----------------------------
    def subscribe(
        self,
        callback: ChangeCallback,
        *,
        lead_id: Optional[str] = None,
        event: str = ANY_EVENT,
    ) -> Subscription:
        if event != ANY_EVENT:
            event = ChangeType(event).value
        sub = Subscription(callback=callback, lead_id=lead_id, event=event, _store=self)
        self._subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        try:
            self._subscriptions.remove(sub)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def _publish(self, change: LeadChange) -> None:
        for sub in list(self._subscriptions):
            if not sub.matches(change):
                continue
            try:
                result = sub.callback(change)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Lead change subscriber failed for lead_id={change.record.get('id')}: {e}")


def _coerce_datetime(name: str, value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    raise InvalidFieldUpdate(f"{name} must be a datetime or ISO-8601 string")


lead_store = LeadStore()
