"""
User role management and the administrative audit trail.
"""
