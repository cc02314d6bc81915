"""Redmine-authoritative synchronisation of GitLab groups, members and repositories."""

__version__ = "0.1.0"
