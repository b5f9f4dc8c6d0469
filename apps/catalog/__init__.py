"""
Products and clients of an organization.
"""
