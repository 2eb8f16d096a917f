import os

# Keep test runs off the on-disk database and log directory
os.environ.setdefault("IPAM_LOG_DIR", "")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from ipam_hierarchy.main import app, get_session
from ipam_hierarchy.models import Country, Region, Host
from ipam_hierarchy.ip_utils import region_cidr, host_ip


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session: Session):
    app.dependency_overrides[get_session] = lambda: session
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def india(session: Session) -> Country:
    country = Country(continent="Asia", country="India", x_start=0, x_end=29)
    session.add(country)
    session.commit()
    session.refresh(country)
    return country


@pytest.fixture
def make_region(session: Session):
    def _make(country: str, x_octet: int, y_octet: int, name: str = None) -> Region:
        region = Region(
            country=country,
            region_name=name or f"region-{x_octet}-{y_octet}",
            x_octet=x_octet,
            y_octet=y_octet,
            cidr=region_cidr(x_octet, y_octet),
        )
        session.add(region)
        session.commit()
        session.refresh(region)
        return region
    return _make


@pytest.fixture
def fill_region(session: Session):
    """Insert active hosts with Z = 1..count directly, bypassing the API."""
    def _fill(region: Region, count: int):
        for z_octet in range(1, count + 1):
            session.add(Host(
                region_id=region.region_id,
                hostname=f"bulk-{z_octet:03d}",
                x_octet=region.x_octet,
                y_octet=region.y_octet,
                z_octet=z_octet,
                ip_address=host_ip(region.x_octet, region.y_octet, z_octet),
            ))
        session.commit()
    return _fill
