# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and display."""
    PURCHASING = "PURCHASING"
    QUALITY = "QUALITY"
    WAREHOUSE = "WAREHOUSE"
    INVENTORY = "INVENTORY"
    WORKFLOW = "WORKFLOW"
    MASTER_DATA = "MASTER_DATA"
    USERS = "USERS"
    SYSTEM = "SYSTEM"
