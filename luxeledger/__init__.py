"""
Luxe Ledger - Persistence and Encryption Core

Local-first personal data manager core: financial tracking, credential
vault and file inventory, running entirely on one device with no server.

DESIGN PRINCIPLES:
1. One authoritative in-memory snapshot per process
2. The durable backend is the source of truth across restarts
3. Storage failures are logged, never surfaced to the UI
4. Integrity failures (decrypt, unknown ids) are always surfaced
5. Backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Luxe Ledger Team"
