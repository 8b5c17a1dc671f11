class WarcToolsError(Exception):
    """Base class for every fatal error raised by warc_tools."""


class FramingError(WarcToolsError):
    """The record stream is malformed; the rest of the stream cannot be trusted."""


class DecodeError(WarcToolsError):
    """A metadata payload could not be decoded."""


class SamplingError(WarcToolsError):
    """The sampled regime did not consult every drawn sample."""


class ConfigError(WarcToolsError):
    """Required configuration (seed file location, etc.) is missing or unusable."""
