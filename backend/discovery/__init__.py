"""LAN peer discovery engine."""
