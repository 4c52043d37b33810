"""Failures that abort a pipeline step.

Every step raises one of these after it logged the problem. The runner stops
at the first one and reports it; nothing is retried or rolled back.
"""


class PipelineError(Exception):
    """Base class for all step failures."""


class BackendReadError(PipelineError):
    """The secrets backend could not be read."""


class DecodeError(PipelineError):
    """Backend payload was malformed, eg invalid base64 or missing fields."""


class ParseError(PipelineError):
    """An operator parameter could not be parsed."""


class ClientConstructionError(PipelineError):
    """The credential bundle is unusable to build a cluster client."""


class ResourceLookupError(PipelineError):
    """Existence check against the cluster failed for a reason other than 404."""


class MutationError(PipelineError):
    """Create or update against the cluster failed."""
