"""
Gate-protected page endpoints.
"""
