from fastapi import HTTPException, status

class IPAMError(Exception):
    """Base exception for IPAM application"""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=self.message
        )

class ResourceNotFoundError(IPAMError):
    def __init__(self, resource_type: str, resource_id: any):
        super().__init__(f"{resource_type} not found: {resource_id}")
        self.resource_type = resource_type
        self.resource_id = resource_id

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=self.message
        )

class DuplicateResourceError(IPAMError):
    def __init__(self, resource_type: str, identifier: any):
        super().__init__(f"{resource_type} already exists: {identifier}")

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=self.message
        )

class ValidationError(IPAMError):
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, details)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=self.message
        )

class InvalidAddressError(ValidationError, ValueError):
    def __init__(self, address: any, details: dict = None):
        super().__init__(f"Invalid IPv4 address: {address}", details)
        self.address = address

class InvalidCIDRError(ValidationError, ValueError):
    def __init__(self, cidr: any, details: dict = None):
        super().__init__(f"Invalid CIDR format: {cidr}", details)
        self.cidr = cidr

class RangeOverlapError(ValidationError):
    def __init__(self, x_start: int, x_end: int, conflicting: list):
        super().__init__(
            f"X range {x_start}-{x_end} overlaps with existing countries.",
            {"conflicting_countries": conflicting}
        )

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=self.message
        )

class RegionFullError(IPAMError):
    def __init__(self, region_id: str, cidr: str, requested: int = 1, available: int = 0):
        super().__init__(
            f"No available IPs in region {cidr} (ID: {region_id})",
            {"requested": requested, "available": available}
        )

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_507_INSUFFICIENT_STORAGE,
            detail=self.message
        )

class CountryFullError(IPAMError):
    def __init__(self, country: str, total_capacity: int):
        super().__init__(
            f"No available regions in country {country} ({total_capacity} /24 blocks allocated)"
        )

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_507_INSUFFICIENT_STORAGE,
            detail=self.message
        )

class DatabaseError(IPAMError):
    def __init__(self, operation: str, error: str):
        super().__init__(f"Database error during {operation}: {error}")
