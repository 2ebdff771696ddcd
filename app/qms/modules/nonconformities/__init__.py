"""
Non-conformities module.

- NCR lifecycle (OPEN/IN_PROGRESS/RESOLVED/CLOSED) with reopen edges
- Corrective actions with a verification step (PENDING -> ... -> VERIFIED)
- Closing an NCR requires every corrective action to be verified
- Every mutation is recorded to the append-only audit trail
"""
