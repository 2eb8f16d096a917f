from sqlmodel import Session, create_engine, select, SQLModel
from ipam_hierarchy.config import DATABASE_URL
from ipam_hierarchy.models import Country, Region, Host
from ipam_hierarchy.ip_utils import region_cidr, host_ip
from ipam_hierarchy.logic import find_next_free_region

engine = create_engine(DATABASE_URL)
SQLModel.metadata.create_all(engine)

COUNTRIES = [
    ("Asia", "India", 0, 29),
    ("Asia", "UAE", 30, 37),
    ("Asia", "Singapore", 38, 45),
    ("Asia", "Japan", 46, 53),
    ("Africa", "South Africa", 78, 97),
    ("Europe", "Finland", 98, 107),
    ("Europe", "Sweden", 108, 117),
    ("North America", "Canada", 138, 152),
    ("North America", "United States", 153, 167),
    ("South America", "Brazil", 168, 177),
]

REGIONS = [
    ("India", "Mumbai DC"),
    ("India", "Bangalore DC"),
    ("Finland", "Helsinki Edge"),
    ("United States", "Virginia Core"),
]

def seed():
    with Session(engine) as session:
        # 1. Countries
        for continent, name, x_start, x_end in COUNTRIES:
            existing = session.exec(select(Country).where(Country.country == name)).first()
            if not existing:
                session.add(Country(continent=continent, country=name, x_start=x_start, x_end=x_end))
        session.commit()
        print(f"Countries seeded: {len(COUNTRIES)}")

        # 2. Regions
        for country_name, region_name in REGIONS:
            if session.exec(select(Region).where(Region.region_name == region_name)).first():
                continue
            country = session.exec(select(Country).where(Country.country == country_name)).one()
            taken = {(x, y) for x, y in session.exec(select(Region.x_octet, Region.y_octet)).all()}
            x_octet, y_octet = find_next_free_region(country.x_start, country.x_end, taken)
            session.add(Region(
                country=country_name,
                region_name=region_name,
                x_octet=x_octet,
                y_octet=y_octet,
                cidr=region_cidr(x_octet, y_octet),
            ))
            session.commit()
        print("Regions seeded")

        # 3. Hosts
        mumbai = session.exec(select(Region).where(Region.region_name == "Mumbai DC")).one()
        existing_hosts = session.exec(select(Host).where(Host.region_id == mumbai.region_id)).all()
        if not existing_hosts:
            # Gateway first, then a handful of web servers
            names = ["gateway"] + [f"web-{i:03d}" for i in range(1, 6)]
            for z_octet, hostname in enumerate(names, start=1):
                session.add(Host(
                    region_id=mumbai.region_id,
                    hostname=hostname,
                    x_octet=mumbai.x_octet,
                    y_octet=mumbai.y_octet,
                    z_octet=z_octet,
                    ip_address=host_ip(mumbai.x_octet, mumbai.y_octet, z_octet),
                ))
            session.commit()
            print("Hosts seeded")

if __name__ == "__main__":
    seed()
