"""HTTP endpoints of the discovery engine."""
