"""
Quotes application.

Quotes and their line items, totals computation, the approval lifecycle
and the services that create, edit, delete and transition quotes.
"""
