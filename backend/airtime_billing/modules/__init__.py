"""Application modules.

This package contains the feature modules of the billing backend:
- identity: Phone-keyed users and phone normalization
- subscription: Aggregator webhooks, subscription ledger, access gating
"""
