"""Exceptions raised by the discovery engine."""


class SelfDiscovery(Exception):
    """Raised when an inbound identity carries our own fingerprint.

    Callers treat this as a normal outcome and ignore it.
    """


class DiscoveryStartupError(RuntimeError):
    """No usable discovery channel could be opened."""
