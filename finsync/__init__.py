"""
finsync - Source Package

Client-side data layer for a personal-finance app: keeps a local,
continuously-updated view of a user's transactions and goals in step
with a remote backend, and feeds analytics and an AI assistant.

DESIGN PRINCIPLES:
1. The remote backend owns the truth; the local store only mirrors it
2. Local edits show up immediately and roll back visibly on failure
3. Merges are idempotent, so event order does not matter (mostly)
4. Every step must be auditable
5. Backends are swappable
"""

__version__ = "1.0.0"
__author__ = "finsync Team"
