"""
Assessments module.

- Assessment CRUD, clone and status workflow (DRAFT -> ... -> COMPLETED/ARCHIVED)
- Audit team membership
- Question responses (0-5 or N/A) and score recalculation
"""
