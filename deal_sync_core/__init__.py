"""
Deal sync core.

Encrypted OAuth token storage with single-flight refresh for the CRM and
accounting integrations, and atomic project number issuance.
"""

__version__ = "0.1.0"
