"""
Exception types shared by the services and routers.

Upstream API and response-shape failures are normally reported through the
``error`` field of a service result; these exceptions cover the cases that
must stop a request outright.
"""


class ConfigurationError(Exception):
    """A secret or credential needed for the request is not configured."""


class MissingSecretsError(ConfigurationError):
    """The TikTok Shop app key/secret pair is missing."""


class NoShopsError(Exception):
    """The credential table holds no shops."""


class CredentialStoreError(Exception):
    """The credential table could not be read or written."""


class UpstreamShapeError(Exception):
    """An upstream payload did not have the expected structure."""
