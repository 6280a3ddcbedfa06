"""
Infrastructure Layer - provider adapters, storage, encryption, image decoding.
"""
