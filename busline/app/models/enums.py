"""
User roles enumeration.

Defines the role types for the bus tracking platform.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Platform operator (moderation happens in the admin console)
        DRIVER: Drives schedules and publishes the bus position
        PASSENGER: Books seats and may share their own position (default role)
    """
    ADMIN = "ADMIN"
    DRIVER = "DRIVER"
    PASSENGER = "PASSENGER"
