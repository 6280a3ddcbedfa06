"""
Domain Layer - Core Business Objects

Contains:
- entities: search input, results, audit records, responses
"""
