"""
WebStack site manager.

Keeps per-domain nginx/Apache/PHP-FPM configuration, enablement links and
certificate renewal jobs in sync with the domain and certificate records.
"""

__version__ = "0.4.0"
