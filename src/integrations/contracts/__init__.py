"""
Contracts (data models).

This folder defines the request/response shapes for the checkout integration:
- Fee line items and checkout snapshots
- Reconcile outcomes returned to the HTTP layer

Why this exists:
- Ensures consistent data structures across mock and real clients
- Prevents "guessing" payload formats in multiple places

Both mock and real HTTP clients should use these contracts.
"""
