"""
Shared building blocks for QuoteDesk apps.

Provides the abstract BaseModel, the exception taxonomy, structured
logging helpers and the persisted local state store.
"""
