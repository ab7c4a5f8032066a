"""
Authentication, session claims and request authorization.
"""
