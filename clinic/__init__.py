"""Clinic application: appointment scheduling and the billing ledger.

Directory models, the scheduling and billing services with their
persistence stores, and the REST endpoints built on them.
"""
