from typing import Any, Dict, List, Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, CheckConstraint, Column, Index, UniqueConstraint, text
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

class RegionStatus(str, Enum):
    ACTIVE = "Active"
    RESERVED = "Reserved"
    RETIRED = "Retired"

class HostStatus(str, Enum):
    ACTIVE = "Active"
    RELEASED = "Released"

class UtilizationLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class CapacityPriority(str, Enum):
    HIGH = "high"
    CRITICAL = "critical"

class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    RELEASE = "release"
    RETIRE = "retire"

def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def _octet_check(column: str, low: int = 0, high: int = 255) -> CheckConstraint:
    return CheckConstraint(f"{column} BETWEEN {low} AND {high}", name=f"ck_{column}_range")

# Enum columns persist the member name, hence 'ACTIVE'
_ACTIVE_HOST = text("status = 'ACTIVE'")

# --- Country ---
class CountryBase(SQLModel):
    country: str = Field(index=True, unique=True)
    continent: str = Field(default="Unknown", index=True)
    x_start: int = Field(ge=0, le=255)
    x_end: int = Field(ge=0, le=255)

class Country(CountryBase, table=True):
    __table_args__ = (
        _octet_check("x_start"),
        _octet_check("x_end"),
        CheckConstraint("x_start <= x_end", name="ck_country_x_order"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)

class CountryRead(CountryBase):
    """Country with capacity figures derived from its allocated regions."""
    total_capacity: int
    allocated_regions: int
    remaining_capacity: int
    utilization_percentage: float
    utilization_level: UtilizationLevel
    ip_range: str

# --- Region ---
class RegionBase(SQLModel):
    region_name: str
    description: Optional[str] = None
    owner: Optional[str] = None

class Region(RegionBase, table=True):
    __table_args__ = (
        UniqueConstraint("x_octet", "y_octet", name="uq_region_xy"),
        _octet_check("x_octet"),
        _octet_check("y_octet"),
    )

    region_id: str = Field(default_factory=lambda: _new_id("region"), primary_key=True)
    country: str = Field(foreign_key="country.country", index=True)
    x_octet: int = Field(index=True)
    y_octet: int
    cidr: str = Field(index=True)
    status: RegionStatus = Field(default=RegionStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class RegionCreate(RegionBase):
    country: str

class RegionUpdate(SQLModel):
    region_name: Optional[str] = None
    description: Optional[str] = None
    owner: Optional[str] = None
    status: Optional[RegionStatus] = None

class RegionRead(RegionBase):
    region_id: str
    country: str
    continent: Optional[str] = None
    x_octet: int
    y_octet: int
    cidr: str
    status: RegionStatus
    allocated_hosts: int
    utilization_percentage: float
    utilization_level: UtilizationLevel
    created_at: datetime
    updated_at: datetime

# --- Host ---
class HostBase(SQLModel):
    hostname: str
    device_type: Optional[str] = None
    owner: Optional[str] = None
    purpose: Optional[str] = None

class Host(HostBase, table=True):
    __table_args__ = (
        # Released rows keep their address for history; only Active rows hold a Z
        Index("uq_host_active_z", "region_id", "z_octet", unique=True,
              sqlite_where=_ACTIVE_HOST, postgresql_where=_ACTIVE_HOST),
        _octet_check("x_octet"),
        _octet_check("y_octet"),
        _octet_check("z_octet", 1, 254),
    )

    host_id: str = Field(default_factory=lambda: _new_id("host"), primary_key=True)
    region_id: str = Field(foreign_key="region.region_id", index=True)
    x_octet: int
    y_octet: int
    z_octet: int = Field(ge=1, le=254)
    ip_address: str = Field(index=True)
    status: HostStatus = Field(default=HostStatus.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class HostCreate(HostBase):
    region_id: str

class HostUpdate(SQLModel):
    hostname: Optional[str] = None
    device_type: Optional[str] = None
    owner: Optional[str] = None
    purpose: Optional[str] = None

class BatchHostCreate(SQLModel):
    region_id: str
    count: int = Field(ge=1)
    hostname_prefix: str = Field(min_length=1)
    device_type: Optional[str] = None
    owner: Optional[str] = None
    purpose: Optional[str] = None

# --- Audit ---
class AuditEntry(SQLModel, table=True):
    """One allocation lifecycle event: create, update, release or retire."""
    id: Optional[int] = Field(default=None, primary_key=True)
    action_type: AuditAction = Field(index=True)
    resource_type: str = Field(index=True)
    resource_id: str = Field(index=True)
    resource_name: str
    reason: Optional[str] = None
    changes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    timestamp: datetime = Field(default_factory=utc_now, index=True)

# --- Capacity & dashboard ---
class CapacityWarning(SQLModel):
    resource_type: str
    resource_id: str
    resource_name: str
    priority: CapacityPriority
    title: str
    message: str
    utilization_percentage: float
    allocated: int
    capacity: int

class DashboardStats(SQLModel):
    total_countries: int
    total_regions: int
    total_hosts: int
    overall_utilization: float

class CountryUtilization(SQLModel):
    country: str
    continent: str
    allocated_regions: int
    utilization_percentage: float
