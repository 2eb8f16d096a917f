"""
Runtime configuration read from the environment.
"""
import os

PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ipam.db")

# Empty string disables the rotating file handler
LOG_DIR = os.getenv("IPAM_LOG_DIR", os.path.join(PACKAGE_DIR, "logs"))
LOG_LEVEL = os.getenv("IPAM_LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "IPAM_CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    if origin.strip()
]

CAPACITY_WARNING_THRESHOLD = float(os.getenv("IPAM_CAPACITY_WARNING", "80"))
CAPACITY_CRITICAL_THRESHOLD = float(os.getenv("IPAM_CAPACITY_CRITICAL", "90"))

# Batch host allocation upper bound per request
MAX_BATCH_HOSTS = int(os.getenv("IPAM_MAX_BATCH_HOSTS", "100"))

# Re-reads of the free-slot search after a concurrent writer took the same slot
ALLOCATION_ATTEMPTS = int(os.getenv("IPAM_ALLOCATION_ATTEMPTS", "3"))

DEFAULT_PAGE_SIZE = int(os.getenv("IPAM_DEFAULT_PAGE_SIZE", "500"))
MAX_PAGE_SIZE = 1000
