import logging, time
from typing import Dict, Any, List, Optional
from sqlalchemy import delete, select
from .db import SessionLocal, engine as default_engine
from .models import Base, DiscoveryResult, UnitState
from .units import UnitData

log = logging.getLogger("state")

def thing_uid(thing_type: str, bridge_uid: str, unit_id: str) -> str:
    return f"touchwand:{thing_type}:{bridge_uid}:{unit_id}"

def _result_dict(r: DiscoveryResult) -> Dict[str, Any]:
    return {
        "thing_uid": r.thing_uid,
        "bridge_uid": r.bridge_uid,
        "thing_type": r.thing_type,
        "unit_id": r.unit_id,
        "label": r.label,
        "properties": r.properties,
        "timestamp": r.timestamp,
    }

def _unit_dict(u: UnitState) -> Dict[str, Any]:
    return {
        "id": u.id,
        "bridge_uid": u.bridge_uid,
        "name": u.name,
        "type": u.type,
        "status": u.status,
        "curr_status": u.curr_status,
    }

class Catalog:
    """Discovery inbox and last known unit states."""

    def __init__(self, session_factory=SessionLocal, engine=default_engine):
        self._session_factory = session_factory
        self._engine = engine

    async def init_db(self):
        Base.metadata.create_all(self._engine)

    def thing_discovered(self, bridge_uid: str, thing_type: str, unit_id: str, label: str,
                         properties: Optional[Dict[str, Any]] = None,
                         timestamp: Optional[float] = None) -> Dict[str, Any]:
        row = DiscoveryResult(
            thing_uid=thing_uid(thing_type, bridge_uid, unit_id),
            bridge_uid=bridge_uid,
            thing_type=thing_type,
            unit_id=unit_id,
            label=label,
            properties=properties or {},
            timestamp=time.time() if timestamp is None else timestamp,
        )
        with self._session_factory() as s:
            s.merge(row)
            s.commit()
        log.debug("Discovered %s (%s)", row.thing_uid, label)
        return _result_dict(row)

    def remove_older_results(self, timestamp: float, bridge_uid: Optional[str] = None) -> int:
        stmt = delete(DiscoveryResult).where(DiscoveryResult.timestamp < timestamp)
        if bridge_uid is not None:
            stmt = stmt.where(DiscoveryResult.bridge_uid == bridge_uid)
        with self._session_factory() as s:
            removed = s.execute(stmt).rowcount
            s.commit()
        if removed:
            log.info("Removed %d stale discovery results (bridge=%s)", removed, bridge_uid)
        return removed

    def remove_result(self, thing_uid: str) -> bool:
        with self._session_factory() as s:
            removed = s.execute(delete(DiscoveryResult).where(DiscoveryResult.thing_uid == thing_uid)).rowcount
            s.commit()
        return bool(removed)

    def results(self, bridge_uid: Optional[str] = None) -> List[Dict[str, Any]]:
        stmt = select(DiscoveryResult).order_by(DiscoveryResult.thing_uid)
        if bridge_uid is not None:
            stmt = stmt.where(DiscoveryResult.bridge_uid == bridge_uid)
        with self._session_factory() as s:
            return [_result_dict(r) for r in s.scalars(stmt).all()]

    def record_unit(self, bridge_uid: str, unit: UnitData):
        with self._session_factory() as s:
            row = s.get(UnitState, unit.id) or UnitState(id=unit.id)
            row.bridge_uid = bridge_uid
            row.name = unit.name
            row.type = unit.type
            row.status = unit.status
            row.curr_status = unit.curr_status
            s.merge(row)
            s.commit()

    def units(self, bridge_uid: Optional[str] = None) -> List[Dict[str, Any]]:
        stmt = select(UnitState).order_by(UnitState.id)
        if bridge_uid is not None:
            stmt = stmt.where(UnitState.bridge_uid == bridge_uid)
        with self._session_factory() as s:
            return [_unit_dict(u) for u in s.scalars(stmt).all()]

    def get_unit(self, unit_id: str) -> Optional[Dict[str, Any]]:
        with self._session_factory() as s:
            u = s.get(UnitState, unit_id)
            return _unit_dict(u) if u else None

catalog = Catalog()
