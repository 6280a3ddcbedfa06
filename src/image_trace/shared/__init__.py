"""
Shared utilities: exception hierarchy and async helpers.
"""
