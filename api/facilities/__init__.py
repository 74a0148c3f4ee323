"""
Read-only facility endpoints.
"""
