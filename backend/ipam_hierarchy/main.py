"""
IPAM Hierarchy FastAPI application.

Countries own X ranges of 10.0.0.0/8, regions are 10.X.Y.0/24 blocks
inside them and hosts are single 10.X.Y.Z addresses inside a region.
"""
from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlmodel import Session, select, create_engine, SQLModel
from sqlalchemy import text, or_, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from typing import Dict, List, Optional, Tuple
import time

from .config import (
    DATABASE_URL,
    CORS_ORIGINS,
    MAX_BATCH_HOSTS,
    ALLOCATION_ATTEMPTS,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
)
from .models import (
    Country,
    CountryBase,
    CountryRead,
    CountryUtilization,
    Region,
    RegionCreate,
    RegionRead,
    RegionStatus,
    RegionUpdate,
    Host,
    HostCreate,
    HostStatus,
    HostUpdate,
    BatchHostCreate,
    AuditAction,
    AuditEntry,
    CapacityWarning,
    DashboardStats,
    utc_now,
)
from .ip_utils import (
    REGION_CAPACITY,
    calculate_ip_range,
    format_ip_range,
    get_next_available_ip,
    host_ip,
    ip_to_number,
    is_ip_in_range,
    is_valid_cidr,
    is_valid_ipv4,
    region_cidr,
    validate_ip,
)
from .logic import (
    CapacityThresholds,
    calculate_utilization,
    check_capacity,
    classify_utilization,
    country_total_capacity,
    country_utilization,
    find_next_free_region,
    next_free_z_values,
    overall_utilization,
    rank_countries,
    region_utilization,
    validate_x_range_overlap,
)
from .hierarchy import HierarchyNode, NodeType, build_hierarchy, count_nodes, filter_tree
from .logger import logger, log_operation, log_request, log_error, log_database_operation, log_capacity
from .exceptions import (
    ValidationError,
    ResourceNotFoundError,
    DuplicateResourceError,
    RangeOverlapError,
    RegionFullError,
    CountryFullError,
    InvalidAddressError,
    InvalidCIDRError,
    DatabaseError,
)

VERSION = "1.0.0"

# Database Setup
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_engine(DATABASE_URL, echo=False)


def get_session():
    """Dependency to get database session."""
    with Session(engine) as session:
        yield session


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("IPAM Hierarchy starting up...")
    try:
        SQLModel.metadata.create_all(engine)
        logger.info("Database schema created/verified")
    except SQLAlchemyError as e:
        logger.error(f"Startup failed: {str(e)}", exc_info=True)
        raise

    yield

    logger.info("IPAM Hierarchy shutting down...")


app = FastAPI(
    title="IPAM Hierarchy",
    description="Hierarchical 10.X.Y.Z address allocation",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_logging(request, call_next):
    """Middleware to log all HTTP requests with timing."""
    start_time = time.time()
    path = request.url.path
    method = request.method

    try:
        response = await call_next(request)
    except Exception:
        logger.error(f"Request failed: {method} {path}", exc_info=True)
        raise

    duration = (time.time() - start_time) * 1000
    log_request(method, path, response.status_code, duration)
    return response


# ============================================================================
# HELPERS
# ============================================================================

def _commit(session: Session, operation: str, resource_type: str = "Record", identifier: str = None):
    """
    Commit the unit of work. A unique or check constraint rejecting the write
    (typically a concurrent allocation of the same slot) becomes a 409.
    """
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        log_database_operation("COMMIT", resource_type, "conflict", details={"operation": operation, "error": str(e.orig)})
        raise DuplicateResourceError(resource_type, identifier or operation)
    except SQLAlchemyError as e:
        session.rollback()
        raise DatabaseError(operation, str(e))


def _paginate(query, page: int, page_size: int):
    return query.offset((page - 1) * page_size).limit(page_size)


def _audit(
    session: Session,
    action: AuditAction,
    resource_type: str,
    resource_id: str,
    resource_name: str,
    reason: Optional[str] = None,
    changes: Optional[List[dict]] = None,
    **details,
):
    # Staged in the caller's transaction so the trail commits or rolls back with it
    session.add(AuditEntry(
        action_type=action,
        resource_type=resource_type,
        resource_id=resource_id,
        resource_name=resource_name,
        reason=reason,
        changes=changes or [],
        details=details,
    ))


def _plain(value):
    return getattr(value, "value", value)


def _apply_updates(record, updates, required: Tuple[str, ...] = ()) -> List[dict]:
    """
    Copy the fields the client sent onto `record`, returning what changed.
    An explicit null clears optional fields and is ignored for `required` ones.
    """
    changes = []
    for field, value in updates.model_dump(exclude_unset=True).items():
        old_value = getattr(record, field)
        if old_value == value or (value is None and field in required):
            continue
        changes.append({"field": field, "old_value": _plain(old_value), "new_value": _plain(value)})
        setattr(record, field, value)
    return changes


def _get_country(session: Session, name: str) -> Country:
    country = session.exec(select(Country).where(Country.country == name)).first()
    if not country:
        raise ResourceNotFoundError("Country", name)
    return country


def _get_region(session: Session, region_id: str) -> Region:
    region = session.get(Region, region_id)
    if not region:
        raise ResourceNotFoundError("Region", region_id)
    return region


def _get_host(session: Session, host_id: str) -> Host:
    host = session.get(Host, host_id)
    if not host:
        raise ResourceNotFoundError("Host", host_id)
    return host


def _region_counts(session: Session) -> Dict[str, int]:
    rows = session.exec(select(Region.country, func.count(Region.region_id)).group_by(Region.country)).all()
    return {country: count for country, count in rows}


def _active_host_counts(session: Session) -> Dict[str, int]:
    rows = session.exec(
        select(Host.region_id, func.count(Host.host_id))
        .where(Host.status == HostStatus.ACTIVE)
        .group_by(Host.region_id)
    ).all()
    return {region_id: count for region_id, count in rows}


def _continents(session: Session) -> Dict[str, str]:
    rows = session.exec(select(Country.country, Country.continent)).all()
    return {country: continent for country, continent in rows}


def _country_read(country: Country, allocated_regions: int) -> CountryRead:
    total_capacity = country_total_capacity(country.x_start, country.x_end)
    utilization = country_utilization(allocated_regions, country.x_start, country.x_end)
    return CountryRead(
        country=country.country,
        continent=country.continent,
        x_start=country.x_start,
        x_end=country.x_end,
        total_capacity=total_capacity,
        allocated_regions=allocated_regions,
        remaining_capacity=max(total_capacity - allocated_regions, 0),
        utilization_percentage=utilization,
        utilization_level=classify_utilization(utilization),
        ip_range=format_ip_range(country.x_start, country.x_end),
    )


def _region_read(region: Region, allocated_hosts: int, continent: Optional[str] = None) -> RegionRead:
    utilization = region_utilization(allocated_hosts)
    return RegionRead(
        region_id=region.region_id,
        region_name=region.region_name,
        description=region.description,
        owner=region.owner,
        country=region.country,
        continent=continent,
        x_octet=region.x_octet,
        y_octet=region.y_octet,
        cidr=region.cidr,
        status=region.status,
        allocated_hosts=allocated_hosts,
        utilization_percentage=utilization,
        utilization_level=classify_utilization(utilization),
        created_at=region.created_at,
        updated_at=region.updated_at,
    )


def _active_hosts(session: Session, region_id: str) -> List[Host]:
    return session.exec(
        select(Host).where(Host.region_id == region_id, Host.status == HostStatus.ACTIVE)
    ).all()


def _ensure_allocatable(region: Region):
    if region.status == RegionStatus.RETIRED:
        raise ValidationError(
            f"Region {region.region_id} is retired; hosts cannot be allocated",
            {"region_id": region.region_id},
        )


def _warn_if_crowded(resource: str, identifier: str, allocated: int, capacity: int):
    utilization = calculate_utilization(allocated, capacity)
    if utilization >= CapacityThresholds().warning:
        log_capacity(resource, identifier, allocated, capacity, utilization)


def _with_retries(operation: str, stage, commit):
    """
    Run `stage` (read free slots, add rows) then `commit` up to
    ALLOCATION_ATTEMPTS times. A conflicting concurrent writer makes the
    commit fail with DuplicateResourceError; the next attempt re-reads.
    """
    for attempt in range(1, ALLOCATION_ATTEMPTS + 1):
        staged = stage()
        try:
            commit(staged)
            return staged
        except DuplicateResourceError:
            if attempt == ALLOCATION_ATTEMPTS:
                log_operation(operation, "failed", {"reason": "conflict", "attempts": attempt})
                raise
            log_operation(operation, "retry", {"attempt": attempt})


# ============================================================================
# COUNTRY ENDPOINTS
# ============================================================================

@app.get("/countries", response_model=List[CountryRead])
def list_countries(continent: Optional[str] = None, session: Session = Depends(get_session)):
    """List countries with derived capacity and utilization."""
    try:
        query = select(Country).order_by(Country.x_start)
        if continent:
            query = query.where(Country.continent == continent)
        countries = session.exec(query).all()
        counts = _region_counts(session)

        results = [_country_read(c, counts.get(c.country, 0)) for c in countries]
        log_database_operation("READ", "Country", "success", count=len(results))
        return results
    except SQLAlchemyError as e:
        log_error(e, "list_countries", {"continent": continent})
        raise HTTPException(status_code=500, detail="Failed to fetch countries")


@app.post("/countries", response_model=CountryRead, status_code=201)
def create_country(country_data: CountryBase, session: Session = Depends(get_session)):
    """Register a country and the X range it owns."""
    try:
        if country_data.x_start > country_data.x_end:
            log_operation("create_country", "failed", {"reason": "inverted_range", "country": country_data.country})
            raise ValidationError(
                f"x_start ({country_data.x_start}) must not exceed x_end ({country_data.x_end})"
            )

        existing = session.exec(select(Country).where(Country.country == country_data.country)).first()
        if existing:
            log_operation("create_country", "failed", {"reason": "duplicate", "country": country_data.country})
            raise DuplicateResourceError("Country", country_data.country)

        others = session.exec(select(Country)).all()
        if validate_x_range_overlap(country_data.x_start, country_data.x_end, [(c.x_start, c.x_end) for c in others]):
            conflicting = [
                c.country for c in others
                if validate_x_range_overlap(country_data.x_start, country_data.x_end, [(c.x_start, c.x_end)])
            ]
            log_operation("create_country", "failed", {"reason": "overlap", "conflicting": conflicting})
            raise RangeOverlapError(country_data.x_start, country_data.x_end, conflicting)

        country = Country.model_validate(country_data)
        session.add(country)
        _audit(
            session, AuditAction.CREATE, "country", country.country, country.country,
            ip_range=format_ip_range(country.x_start, country.x_end),
        )
        _commit(session, "create_country", "Country", country_data.country)
        session.refresh(country)

        log_database_operation("CREATE", "Country", "success", details={"country": country.country})
        log_operation("create_country", "success", {
            "country": country.country,
            "range": format_ip_range(country.x_start, country.x_end),
        })
        return _country_read(country, 0)

    except (ValidationError, DuplicateResourceError, DatabaseError) as e:
        raise e.to_http_exception()


@app.get("/countries/{name}", response_model=CountryRead)
def get_country(name: str, session: Session = Depends(get_session)):
    """Retrieve a country with its capacity figures."""
    try:
        country = _get_country(session, name)
        allocated = session.exec(
            select(func.count()).select_from(Region).where(Region.country == country.country)
        ).one()
        log_database_operation("READ", "Country", "success")
        return _country_read(country, allocated)
    except ResourceNotFoundError as e:
        raise e.to_http_exception()


# ============================================================================
# REGION ENDPOINTS
# ============================================================================

@app.get("/regions", response_model=List[RegionRead])
def list_regions(
    country: Optional[str] = None,
    status: Optional[RegionStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    session: Session = Depends(get_session),
):
    """List regions, optionally filtered by country and status."""
    try:
        query = select(Region).order_by(Region.x_octet, Region.y_octet)
        if country:
            query = query.where(Region.country == country)
        if status:
            query = query.where(Region.status == status)
        regions = session.exec(_paginate(query, page, page_size)).all()

        counts = _active_host_counts(session)
        continents = _continents(session)
        results = [
            _region_read(r, counts.get(r.region_id, 0), continents.get(r.country))
            for r in regions
        ]
        log_database_operation("READ", "Region", "success", count=len(results))
        return results
    except SQLAlchemyError as e:
        log_error(e, "list_regions", {"country": country})
        raise HTTPException(status_code=500, detail="Failed to fetch regions")


@app.post("/regions", response_model=RegionRead, status_code=201)
def create_region(region_data: RegionCreate, session: Session = Depends(get_session)):
    """Allocate the next free /24 inside the country's X range."""
    try:
        country = _get_country(session, region_data.country)
        total = country_total_capacity(country.x_start, country.x_end)

        def stage() -> Tuple[Region, int]:
            rows = session.exec(
                select(Region.x_octet, Region.y_octet)
                .where(Region.x_octet >= country.x_start, Region.x_octet <= country.x_end)
            ).all()
            allocated_pairs = {(x, y) for x, y in rows}

            pair = find_next_free_region(country.x_start, country.x_end, allocated_pairs)
            if pair is None:
                log_operation("create_region", "failed", {"country": country.country, "reason": "country_full"})
                raise CountryFullError(country.country, total)

            x_octet, y_octet = pair
            region = Region(
                **region_data.model_dump(),
                x_octet=x_octet,
                y_octet=y_octet,
                cidr=region_cidr(x_octet, y_octet),
            )
            session.add(region)
            _audit(session, AuditAction.CREATE, "region", region.region_id, region.region_name, cidr=region.cidr)
            return region, len(allocated_pairs)

        def commit(staged):
            region, _ = staged
            _commit(session, "create_region", "Region", region.cidr)

        region, previously_allocated = _with_retries("create_region", stage, commit)
        session.refresh(region)

        log_database_operation("CREATE", "Region", "success", details={"region_id": region.region_id, "cidr": region.cidr})
        log_operation("create_region", "success", {"region_id": region.region_id, "cidr": region.cidr})
        _warn_if_crowded("country", country.country, previously_allocated + 1, total)
        return _region_read(region, 0, country.continent)

    except (ResourceNotFoundError, CountryFullError, DuplicateResourceError, DatabaseError) as e:
        raise e.to_http_exception()


@app.get("/regions/{region_id}", response_model=RegionRead)
def get_region(region_id: str, session: Session = Depends(get_session)):
    """Get region details with utilization percentage."""
    try:
        region = _get_region(session, region_id)
        allocated = len(_active_hosts(session, region_id))
        continent = _continents(session).get(region.country)
        log_database_operation("READ", "Region", "success")
        return _region_read(region, allocated, continent)
    except ResourceNotFoundError as e:
        raise e.to_http_exception()


@app.patch("/regions/{region_id}", response_model=RegionRead)
def update_region(region_id: str, region_data: RegionUpdate, session: Session = Depends(get_session)):
    """Edit a region's name, description, owner or Active/Reserved status."""
    try:
        region = _get_region(session, region_id)
        if region.status == RegionStatus.RETIRED:
            raise ValidationError(f"Region {region_id} is retired and cannot be modified")
        if region_data.status == RegionStatus.RETIRED:
            raise ValidationError(f"Use POST /regions/{region_id}/retire to retire a region")

        changes = _apply_updates(region, region_data, required=("region_name", "status"))
        if changes:
            region.updated_at = utc_now()
            session.add(region)
            _audit(session, AuditAction.UPDATE, "region", region.region_id, region.region_name, changes=changes)
            _commit(session, "update_region", "Region", region_id)
            session.refresh(region)
            log_operation("update_region", "success", {"region_id": region_id, "fields": [c["field"] for c in changes]})

        allocated = len(_active_hosts(session, region_id))
        return _region_read(region, allocated, _continents(session).get(region.country))

    except (ResourceNotFoundError, ValidationError, DuplicateResourceError, DatabaseError) as e:
        raise e.to_http_exception()


@app.post("/regions/{region_id}/retire", response_model=RegionRead)
def retire_region(
    region_id: str,
    reason: Optional[str] = None,
    cascade: bool = True,
    session: Session = Depends(get_session),
):
    """
    Retire a region. With `cascade` (the default) every active host inside it
    is released; without it a region that still has active hosts is refused.
    """
    try:
        region = _get_region(session, region_id)
        if region.status == RegionStatus.RETIRED:
            raise ValidationError(f"Region {region_id} is already retired")

        active = _active_hosts(session, region_id)
        if active and not cascade:
            raise ValidationError(
                f"Region {region_id} still has {len(active)} active hosts",
                {"active_hosts": len(active)},
            )

        now = utc_now()
        for host in active:
            host.status = HostStatus.RELEASED
            host.updated_at = now
            session.add(host)
            _audit(
                session, AuditAction.RELEASE, "host", host.host_id, host.hostname,
                reason=reason or f"Region {region.region_name} retired", ip_address=host.ip_address,
            )

        region.status = RegionStatus.RETIRED
        region.updated_at = now
        session.add(region)
        _audit(
            session, AuditAction.RETIRE, "region", region.region_id, region.region_name,
            reason=reason, cidr=region.cidr, released_hosts=len(active),
        )
        _commit(session, "retire_region", "Region", region_id)
        session.refresh(region)

        log_operation("retire_region", "success", {"region_id": region_id, "released_hosts": len(active)})
        return _region_read(region, 0, _continents(session).get(region.country))

    except (ResourceNotFoundError, ValidationError, DuplicateResourceError, DatabaseError) as e:
        raise e.to_http_exception()


@app.get("/regions/{region_id}/next-available")
def preview_next_available(region_id: str, session: Session = Depends(get_session)):
    """Preview the address the next host allocation would receive."""
    try:
        region = _get_region(session, region_id)
        active = [h.ip_address for h in _active_hosts(session, region_id)]
        next_ip = None
        if region.status != RegionStatus.RETIRED:
            next_ip = get_next_available_ip(active, region.cidr)
        return {
            "region_id": region_id,
            "cidr": region.cidr,
            "next_available_ip": next_ip,
            "allocated_hosts": len(active),
            "available_hosts": REGION_CAPACITY - len(active),
        }
    except (ResourceNotFoundError, InvalidCIDRError) as e:
        raise e.to_http_exception()


# ============================================================================
# HOST ENDPOINTS
# ============================================================================

@app.get("/hosts", response_model=List[Host])
def list_hosts(
    region_id: Optional[str] = None,
    country: Optional[str] = None,
    status: Optional[HostStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    session: Session = Depends(get_session),
):
    """List hosts, optionally filtered by region, country and status."""
    try:
        query = select(Host).order_by(Host.x_octet, Host.y_octet, Host.z_octet, Host.created_at)
        if region_id:
            query = query.where(Host.region_id == region_id)
        if country:
            query = query.where(Host.region_id.in_(select(Region.region_id).where(Region.country == country)))
        if status:
            query = query.where(Host.status == status)
        hosts = session.exec(_paginate(query, page, page_size)).all()
        log_database_operation("READ", "Host", "success", count=len(hosts))
        return hosts
    except SQLAlchemyError as e:
        log_error(e, "list_hosts", {"region_id": region_id, "country": country})
        raise HTTPException(status_code=500, detail="Failed to fetch hosts")


@app.post("/hosts", response_model=Host, status_code=201)
def create_host(host_data: HostCreate, session: Session = Depends(get_session)):
    """Allocate the lowest free host address in a region."""
    try:
        region = _get_region(session, host_data.region_id)
        _ensure_allocatable(region)

        def stage() -> Tuple[Host, int]:
            active = [h.ip_address for h in _active_hosts(session, region.region_id)]
            next_ip = get_next_available_ip(active, region.cidr)
            if not next_ip:
                log_operation("create_host", "failed", {"region_id": region.region_id, "reason": "region_full"})
                raise RegionFullError(region.region_id, region.cidr)

            host = Host(
                **host_data.model_dump(),
                x_octet=region.x_octet,
                y_octet=region.y_octet,
                z_octet=ip_to_number(next_ip) & 0xFF,
                ip_address=next_ip,
            )
            session.add(host)
            _audit(session, AuditAction.CREATE, "host", host.host_id, host.hostname, ip_address=next_ip)
            return host, len(active)

        def commit(staged):
            host, _ = staged
            _commit(session, "create_host", "Host", host.ip_address)

        host, previously_active = _with_retries("create_host", stage, commit)
        session.refresh(host)

        log_database_operation("CREATE", "Host", "success", details={"address": host.ip_address, "hostname": host.hostname})
        log_operation("create_host", "success", {"address": host.ip_address, "region_id": region.region_id})
        _warn_if_crowded("region", region.region_id, previously_active + 1, REGION_CAPACITY)
        return host

    except (ResourceNotFoundError, ValidationError, RegionFullError, DuplicateResourceError, DatabaseError) as e:
        raise e.to_http_exception()


@app.post("/hosts/batch", response_model=List[Host], status_code=201)
def create_hosts_batch(batch: BatchHostCreate, session: Session = Depends(get_session)):
    """Allocate `count` consecutive free addresses named prefix-001, prefix-002, ..."""
    try:
        if batch.count > MAX_BATCH_HOSTS:
            raise ValidationError(
                f"Batch size {batch.count} exceeds the limit of {MAX_BATCH_HOSTS}",
                {"count": batch.count},
            )
        region = _get_region(session, batch.region_id)
        _ensure_allocatable(region)

        def stage() -> Tuple[List[Host], int]:
            allocated_z = {h.z_octet for h in _active_hosts(session, region.region_id)}
            z_values = next_free_z_values(allocated_z, batch.count)
            if len(z_values) < batch.count:
                log_operation("create_hosts_batch", "failed", {
                    "region_id": region.region_id,
                    "requested": batch.count,
                    "available": len(z_values),
                })
                raise RegionFullError(region.region_id, region.cidr, batch.count, len(z_values))

            hosts = []
            for index, z_octet in enumerate(z_values, start=1):
                host = Host(
                    region_id=region.region_id,
                    hostname=f"{batch.hostname_prefix}-{index:03d}",
                    device_type=batch.device_type,
                    owner=batch.owner,
                    purpose=batch.purpose,
                    x_octet=region.x_octet,
                    y_octet=region.y_octet,
                    z_octet=z_octet,
                    ip_address=host_ip(region.x_octet, region.y_octet, z_octet),
                )
                session.add(host)
                _audit(session, AuditAction.CREATE, "host", host.host_id, host.hostname, ip_address=host.ip_address)
                hosts.append(host)
            return hosts, len(allocated_z)

        def commit(staged):
            _commit(session, "create_hosts_batch", "Host", region.cidr)

        hosts, previously_active = _with_retries("create_hosts_batch", stage, commit)
        for host in hosts:
            session.refresh(host)

        log_database_operation("CREATE", "Host", "success", count=len(hosts))
        log_operation("create_hosts_batch", "success", {"region_id": region.region_id, "count": len(hosts)})
        _warn_if_crowded("region", region.region_id, previously_active + len(hosts), REGION_CAPACITY)
        return hosts

    except (ResourceNotFoundError, ValidationError, RegionFullError, DuplicateResourceError, DatabaseError) as e:
        raise e.to_http_exception()


@app.get("/hosts/{host_id}", response_model=Host)
def get_host(host_id: str, session: Session = Depends(get_session)):
    try:
        return _get_host(session, host_id)
    except ResourceNotFoundError as e:
        raise e.to_http_exception()


@app.patch("/hosts/{host_id}", response_model=Host)
def update_host(host_id: str, host_data: HostUpdate, session: Session = Depends(get_session)):
    """Edit a host's descriptive fields; its address and status are not editable."""
    try:
        host = _get_host(session, host_id)
        changes = _apply_updates(host, host_data, required=("hostname",))
        if changes:
            host.updated_at = utc_now()
            session.add(host)
            _audit(session, AuditAction.UPDATE, "host", host.host_id, host.hostname, changes=changes)
            _commit(session, "update_host", "Host", host_id)
            session.refresh(host)
            log_operation("update_host", "success", {"host_id": host_id, "fields": [c["field"] for c in changes]})
        return host

    except (ResourceNotFoundError, DuplicateResourceError, DatabaseError) as e:
        raise e.to_http_exception()


@app.post("/hosts/{host_id}/release", response_model=Host)
def release_host(host_id: str, reason: Optional[str] = None, session: Session = Depends(get_session)):
    """Release a host; its Z octet becomes available again."""
    try:
        host = _get_host(session, host_id)
        if host.status == HostStatus.RELEASED:
            raise ValidationError(f"Host {host_id} is already released")

        host.status = HostStatus.RELEASED
        host.updated_at = utc_now()
        session.add(host)
        _audit(
            session, AuditAction.RELEASE, "host", host.host_id, host.hostname,
            reason=reason, ip_address=host.ip_address,
        )
        _commit(session, "release_host", "Host", host_id)
        session.refresh(host)

        log_operation("release_host", "success", {"host_id": host_id, "address": host.ip_address, "reason": reason})
        return host

    except (ResourceNotFoundError, ValidationError, DuplicateResourceError, DatabaseError) as e:
        raise e.to_http_exception()


# ============================================================================
# HIERARCHY, CAPACITY & SEARCH
# ============================================================================

def _snapshot(session: Session):
    counts = _region_counts(session)
    countries = [
        _country_read(c, counts.get(c.country, 0))
        for c in session.exec(select(Country).order_by(Country.x_start)).all()
    ]
    continents = {c.country: c.continent for c in countries}
    host_counts = _active_host_counts(session)
    regions = [
        _region_read(r, host_counts.get(r.region_id, 0), continents.get(r.country))
        for r in session.exec(select(Region).order_by(Region.x_octet, Region.y_octet)).all()
    ]
    return countries, regions


@app.get("/hierarchy", response_model=List[HierarchyNode])
def get_hierarchy(q: Optional[str] = None, session: Session = Depends(get_session)):
    """Continent/country/region/host tree, optionally filtered by `q`."""
    try:
        countries, regions = _snapshot(session)
        hosts = session.exec(select(Host).order_by(Host.x_octet, Host.y_octet, Host.z_octet)).all()
        tree = filter_tree(build_hierarchy(countries, regions, hosts), q)
        log_operation("get_hierarchy", "success", {
            "query": q,
            "regions": count_nodes(tree, NodeType.REGION),
            "hosts": count_nodes(tree, NodeType.HOST),
        })
        return tree
    except SQLAlchemyError as e:
        log_error(e, "get_hierarchy", {"query": q})
        raise HTTPException(status_code=500, detail="Failed to build hierarchy")


@app.get("/capacity/warnings", response_model=List[CapacityWarning])
def capacity_warnings(session: Session = Depends(get_session)):
    """Countries and regions at or above the warning threshold, most utilized first."""
    try:
        countries, regions = _snapshot(session)
        warnings = []
        for c in countries:
            warning = check_capacity(
                "country", c.country, c.country,
                c.utilization_percentage, c.allocated_regions, c.total_capacity,
            )
            if warning:
                warnings.append(warning)
        for r in regions:
            if r.status == RegionStatus.RETIRED:
                continue
            warning = check_capacity(
                "region", r.region_id, r.region_name,
                r.utilization_percentage, r.allocated_hosts, REGION_CAPACITY,
            )
            if warning:
                warnings.append(warning)
        warnings.sort(key=lambda w: w.utilization_percentage, reverse=True)
        return warnings
    except SQLAlchemyError as e:
        log_error(e, "capacity_warnings")
        raise HTTPException(status_code=500, detail="Failed to compute capacity warnings")


@app.get("/search")
def search(q: str, session: Session = Depends(get_session)):
    """Search for hosts or regions."""
    if len(q) < 2:
        return {"results": []}

    results = []

    # autoescape: "%" and "_" in the query are literal characters
    hosts = session.exec(
        select(Host)
        .where(or_(Host.ip_address.contains(q, autoescape=True), Host.hostname.contains(q, autoescape=True)))
        .limit(10)
    ).all()
    for host in hosts:
        results.append({
            "type": "host",
            "id": host.host_id,
            "title": host.ip_address,
            "subtitle": host.hostname,
            "status": host.status,
        })

    regions = session.exec(
        select(Region)
        .where(or_(Region.cidr.contains(q, autoescape=True), Region.region_name.contains(q, autoescape=True)))
        .limit(5)
    ).all()
    for region in regions:
        results.append({
            "type": "region",
            "id": region.region_id,
            "title": region.cidr,
            "subtitle": region.region_name,
            "status": region.status,
        })

    return {"results": results}


# ============================================================================
# DASHBOARD & AUDIT
# ============================================================================

@app.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(session: Session = Depends(get_session)):
    """Entity totals and the share of all country capacity held by regions."""
    try:
        countries, regions = _snapshot(session)
        active_hosts = session.exec(
            select(func.count()).select_from(Host).where(Host.status == HostStatus.ACTIVE)
        ).one()
        return DashboardStats(
            total_countries=len(countries),
            total_regions=len(regions),
            total_hosts=active_hosts,
            overall_utilization=overall_utilization(countries),
        )
    except SQLAlchemyError as e:
        log_error(e, "dashboard_stats")
        raise HTTPException(status_code=500, detail="Failed to compute dashboard stats")


@app.get("/dashboard/top-countries", response_model=List[CountryUtilization])
def top_countries(limit: int = Query(10, ge=1, le=100), session: Session = Depends(get_session)):
    try:
        countries, _ = _snapshot(session)
        return [
            CountryUtilization(
                country=c.country,
                continent=c.continent,
                allocated_regions=c.allocated_regions,
                utilization_percentage=c.utilization_percentage,
            )
            for c in rank_countries(countries, limit)
        ]
    except SQLAlchemyError as e:
        log_error(e, "top_countries")
        raise HTTPException(status_code=500, detail="Failed to rank countries")


@app.get("/dashboard/recent-activity", response_model=List[AuditEntry])
def recent_activity(limit: int = Query(10, ge=1, le=100), session: Session = Depends(get_session)):
    """Latest allocation events, newest first."""
    return session.exec(select(AuditEntry).order_by(AuditEntry.id.desc()).limit(limit)).all()


@app.get("/audit", response_model=List[AuditEntry])
def list_audit(
    action_type: Optional[AuditAction] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=MAX_PAGE_SIZE),
    session: Session = Depends(get_session),
):
    """Allocation history, newest first."""
    try:
        query = select(AuditEntry).order_by(AuditEntry.id.desc())
        if action_type:
            query = query.where(AuditEntry.action_type == action_type)
        if resource_type:
            query = query.where(AuditEntry.resource_type == resource_type)
        if resource_id:
            query = query.where(AuditEntry.resource_id == resource_id)
        entries = session.exec(_paginate(query, page, page_size)).all()
        log_database_operation("READ", "AuditEntry", "success", count=len(entries))
        return entries
    except SQLAlchemyError as e:
        log_error(e, "list_audit", {"resource_id": resource_id})
        raise HTTPException(status_code=500, detail="Failed to fetch audit trail")


@app.get("/audit/{audit_id}", response_model=AuditEntry)
def get_audit_entry(audit_id: int, session: Session = Depends(get_session)):
    try:
        entry = session.get(AuditEntry, audit_id)
        if not entry:
            raise ResourceNotFoundError("Audit entry", audit_id)
        return entry
    except ResourceNotFoundError as e:
        raise e.to_http_exception()


# ============================================================================
# ADDRESS TOOLS
# ============================================================================

@app.get("/tools/validate")
def validate_address(ip: Optional[str] = None, cidr: Optional[str] = None):
    """Run the form validators against an address and/or CIDR literal."""
    result = {}
    if ip is not None:
        result.update({"ip": ip, "ip_valid": is_valid_ipv4(ip), "host_ip_valid": validate_ip(ip)})
    if cidr is not None:
        result.update({"cidr": cidr, "cidr_valid": is_valid_cidr(cidr)})
    return result


@app.get("/tools/range")
def cidr_range(cidr: str):
    """Network address, broadcast address and size of a CIDR block."""
    try:
        ip_range = calculate_ip_range(cidr)
        return {"cidr": cidr, **ip_range._asdict()}
    except InvalidCIDRError as e:
        raise e.to_http_exception()


@app.get("/tools/contains")
def cidr_contains(ip: str, cidr: str):
    try:
        return {"ip": ip, "cidr": cidr, "contained": is_ip_in_range(ip, cidr)}
    except (InvalidAddressError, InvalidCIDRError) as e:
        raise e.to_http_exception()


# ============================================================================
# HEALTH & STATUS ENDPOINTS
# ============================================================================

@app.get("/health")
def health_check(session: Session = Depends(get_session)):
    """Health check endpoint for monitoring."""
    try:
        session.exec(text("SELECT 1"))
        return {"status": "healthy", "version": VERSION, "database": "connected"}
    except SQLAlchemyError as e:
        logger.error("Health check failed", exc_info=True)
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "version": VERSION,
                "database": "disconnected",
                "error": str(e),
            },
        )


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": "IPAM Hierarchy",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
