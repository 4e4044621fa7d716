from sqlalchemy import Column, String, JSON, TIMESTAMP, Float
from sqlalchemy.sql import func
from .db import Base

class DiscoveryResult(Base):
    __tablename__ = "discovery_results"
    thing_uid = Column(String, primary_key=True)  # touchwand:<thing_type>:<bridge>:<unit_id>
    bridge_uid = Column(String, nullable=False, index=True)
    thing_type = Column(String, nullable=False)
    unit_id = Column(String, nullable=False)
    label = Column(String)
    properties = Column(JSON)
    timestamp = Column(Float, nullable=False)  # epoch seconds of discovery

class UnitState(Base):
    __tablename__ = "unit_states"
    id = Column(String, primary_key=True)  # controller-assigned unit id
    bridge_uid = Column(String, index=True)
    name = Column(String)
    type = Column(String)
    status = Column(String)
    curr_status = Column(JSON)
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
