"""End-to-end UI harness for the portal: resilient TOTP login and event browser page objects."""

__version__ = "0.1.0"
