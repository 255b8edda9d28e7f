"""Airtime Subscription Billing Backend.

Subscription lifecycle engine for a fitness app sold through telecom
aggregator airtime billing (SMS/USSD).

Modules:
    - core: Configuration, database, logging, tracing, metrics
    - modules.identity: Phone-keyed users and the canonical phone format
    - modules.subscription: Telco webhook state machine and access gating
"""

__version__ = "0.1.0"
