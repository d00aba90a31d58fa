# services/__init__.py
# ============================================================================
# CLUBSPHERE: SERVICES MODULE
# ============================================================================
# Identity, eligibility, the join workflow and the catalog/admin services
# ============================================================================

from services.identity import Principal, authorize, parse_object_id, require_role
from services.workflow import JoinOutcome, JoinWorkflow
from services.catalog import CatalogService
from services.admin import AdminService

__all__ = [
    # Identity
    "Principal",
    "authorize",
    "parse_object_id",
    "require_role",
    # Workflow
    "JoinOutcome",
    "JoinWorkflow",
    # Catalog and admin
    "CatalogService",
    "AdminService",
]
