"""
Error classes for pipeport conversion runs.

Every error below is fatal: the run aborts and no workflow is produced.
Unsupported constructs are NOT errors; they degrade to a placeholder step
and a notice on the ConversionResult.

Error handling contract:
- Parse and load errors surface before any conversion starts
- Rule failures abort the whole run (no partial workflow)
- The CLI presents the message and exit code; the engine never retries
"""

from typing import Optional


class PipeportError(Exception):
    """Base exception for pipeport."""
    pass


class ParseError(PipeportError):
    """
    Malformed source pipeline.

    Attributes:
        construct: The offending job or key, when known
        location: Source file (and key path) where the problem was found
    """

    def __init__(
        self,
        message: str,
        construct: Optional[str] = None,
        location: Optional[str] = None,
    ):
        self.construct = construct
        self.location = location
        parts = [message]
        if construct:
            parts.append(f"construct: {construct}")
        if location:
            parts.append(f"at {location}")
        super().__init__(" | ".join(parts))


class OverrideLoadError(PipeportError):
    """
    A custom transformers file failed to compile or raised while loading.

    Errors raised later from inside a transform body are not load errors;
    those surface as TransformExecutionError during conversion.
    """

    def __init__(self, message: str, location: Optional[str] = None):
        self.location = location
        if location:
            message = f"{location}: {message}"
        super().__init__(message)


class DuplicateIdentifierError(PipeportError):
    """Two steps in the same job share an identifier."""

    def __init__(self, job: str, identifiers: set[str]):
        self.job = job
        self.identifiers = identifiers
        super().__init__(
            f"Job '{job}' has duplicate step identifiers: {sorted(identifiers)}"
        )


class DuplicateDefaultError(PipeportError):
    """A default rule was registered twice for the same identifier."""
    pass


class TransformExecutionError(PipeportError):
    """A rule raised while converting a step."""

    def __init__(self, identifier: str, cause: BaseException, job: Optional[str] = None):
        self.identifier = identifier
        self.job = job
        self.cause = cause
        where = f" in job '{job}'" if job else ""
        super().__init__(
            f"Transformer for '{identifier}'{where} failed: "
            f"{type(cause).__name__}: {cause}"
        )


class InvalidTransformResultError(PipeportError):
    """A rule returned a value that cannot become a TargetStep."""

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Transformer for '{identifier}' returned an invalid step: {reason}")
