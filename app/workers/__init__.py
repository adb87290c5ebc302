"""
Workers module for process entry points that run outside the web server.

This module contains:
- scheduler_cli: one-shot scheduler commands for system cron
"""
