"""
Mock integration clients.

These clients return fake (but realistic) responses without calling any external API.
They are used when:
- BigCommerce credentials are not available
- We want to exercise the reconciler against upstream quirks in tests

Important:
- Mock clients must follow the SAME interface as real HTTP clients.
- Mock clients should return data shaped according to src/integrations/contracts/*
"""
