"""
Capability Strings

WHY: Every HTTP entry point is gated by one capability. The strings are the
module names operators are granted ("access drawer", ...); administrators
pass every check.
"""

# =============================================================================
# CAPABILITIES
# =============================================================================

ACCESS_POS = "access pos"
ACCESS_DRAWER = "access drawer"
ACCESS_INVENTORY = "access inventory"
ACCESS_STOCK_ADJUSTMENTS = "access inventory-stock-adjustments"
ACCESS_ASSEMBLY = "access inventory-assembly"
ACCESS_INVENTORY_LOG = "access inventory-log"
ACCESS_REGISTER_HISTORY = "access register-history"
ACCESS_REPORTS = "access reports"
ACCESS_SETTINGS = "access settings"
APPROVE_REGISTER_ACCESS = "approve register-access"

# (code, description)
PERMISSION_DEFINITIONS = [
    (ACCESS_POS, "Ring up sales and collect customer debt"),
    (ACCESS_DRAWER, "Open, review and close register sessions; record income and expenses"),
    (ACCESS_INVENTORY, "View items and receive stock"),
    (ACCESS_STOCK_ADJUSTMENTS, "Create and reverse stock adjustments"),
    (ACCESS_ASSEMBLY, "Assemble items from parts"),
    (ACCESS_INVENTORY_LOG, "View and verify item stock history"),
    (ACCESS_REGISTER_HISTORY, "View closed sessions, request access, process returns"),
    (ACCESS_REPORTS, "View ledger balances and reconciliation"),
    (ACCESS_SETTINGS, "Manage bank accounts"),
    (APPROVE_REGISTER_ACCESS, "Approve or deny access to closed register sessions"),
]

ALL_PERMISSIONS = frozenset(code for code, _ in PERMISSION_DEFINITIONS)
