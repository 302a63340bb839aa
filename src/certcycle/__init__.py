"""certcycle -- certificate lifecycle manager for reverse proxies.

Keeps a reverse proxy supplied with a valid TLS certificate: a
self-signed fallback is always generated first, then an upgrade to a
Let's Encrypt certificate is attempted and renewed on a schedule.
"""

__version__ = "1.0.0"
