"""Outbound delivery of the run summary (email, webhook, syslog)."""
