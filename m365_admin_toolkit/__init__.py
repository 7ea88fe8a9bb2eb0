"""
M365 Admin Toolkit
==================
Tenant inventory collection and guarded bulk account actions for
Microsoft 365, Entra ID and Azure.

Collection runs are read-only. Bulk actions (disable, delete, revoke
sessions) require explicit confirmation before any write is sent.
"""

__version__ = "1.0.0"
__author__ = "M365 Admin Toolkit"
