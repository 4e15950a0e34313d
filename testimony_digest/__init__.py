"""
Testimony digest delivery.

Builds per-user digests of new testimony on followed bills and authors and
queues them for email delivery.
"""

__version__ = "0.1.0"
