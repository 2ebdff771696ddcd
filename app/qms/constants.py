"""
Central constants for the QMS application.
"""
from __future__ import annotations

# Response scores run 0..5; None means "not applicable".
MIN_SCORE = 0
MAX_SCORE = 5

# Submitted scores below this need a written justification.
JUSTIFICATION_REQUIRED_BELOW = 3

# Submitted scores at or below this are treated as failing (NCR candidates).
FAILING_SCORE_MAX = 2

# Auditable ISO 9001:2015 clauses (0-3 are introductory).
ISO_9001_CLAUSES = ("4", "5", "6", "7", "8", "9", "10")

DEFAULT_ORGANIZATION_NAME = "Default Organization"

# Static template ids so seeds and clients agree across environments.
TEMPLATE_IDS = {
    "FULL": "00000000-0000-4000-8000-000000000002",
    "QUICK_CHECK": "00000000-0000-4000-8000-000000000010",
    "LEADERSHIP": "00000000-0000-4000-8000-000000000011",
    "OPERATIONS": "00000000-0000-4000-8000-000000000012",
    "DOCUMENTATION": "00000000-0000-4000-8000-000000000013",
    "STRATEGIC": "00000000-0000-4000-8000-000000000014",
    "PERFORMANCE": "00000000-0000-4000-8000-000000000015",
}

# Role keys used by seeds and permission checks.
ROLE_SYSTEM_ADMIN = "system_admin"
ROLE_QUALITY_MANAGER = "quality_manager"
ROLE_INTERNAL_AUDITOR = "internal_auditor"
ROLE_DEPARTMENT_HEAD = "department_head"
ROLE_VIEWER = "viewer"
