"""
User roles enumeration.

Defines the role types for the ride-pooling marketplace.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.
    
    Roles:
        ADMIN: Approves settlements and operates the platform
        DRIVER: Publishes trips and scans riders' booking codes
        RIDER: Books seats and pays from a prepaid wallet (default role)
    """
    ADMIN = "ADMIN"
    DRIVER = "DRIVER"
    RIDER = "RIDER"
