"""Exceptions raised by the push dispatch engine.

Per-device delivery failures are never raised: they are reported as
DeliveryResult entries. Only errors that make the whole call impossible
(bad cipher parameters, unusable signing key) propagate to the caller.
"""


class BarkPushError(Exception):
    """Base class for barkpush errors"""
    pass


class ConfigurationError(BarkPushError, ValueError):
    """Encryption parameters are missing or inconsistent"""
    pass


class PayloadError(ConfigurationError):
    """The notification payload could not be encoded"""
    pass


class CredentialError(BarkPushError):
    """The provider signing key is unavailable or unusable"""
    pass
