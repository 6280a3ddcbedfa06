"""
Application Layer - search use cases and persistence.
"""
