"""
Dashboard module: organization-wide compliance figures and trends.
"""
