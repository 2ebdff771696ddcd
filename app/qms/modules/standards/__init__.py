"""
Standards module (read-only reference data).

- ISO 9001:2015 clauses 4-10 as a section tree
- Audit questions per section
- Assessment templates that scope an assessment to a subset of sections
"""
