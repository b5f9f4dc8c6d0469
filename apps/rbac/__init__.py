"""
Identity, membership and capability handling.

Provides:
- Global user identities authenticated by email and password
- Per-organization memberships carrying one role each
- Role to capability mapping and per-quote action checks
- The session store that keeps exactly one organization active
- Audit logging
"""
