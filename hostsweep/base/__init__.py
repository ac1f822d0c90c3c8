"""Foundational pieces every sweep depends on.

- config.py: Configuration record, whitelist config parser, logging setup
- lock.py: single-instance lock (flock primary, mkdir fallback)
- exceptions.py: fatal precondition errors
"""
