"""
Organizations application.

An organization is the tenant that owns clients, products, quotes and
memberships.
"""
