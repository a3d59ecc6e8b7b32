"""
Error taxonomy for custom-script rendering.

Registry, bounds and compiler errors are raised before any rendering work
starts. SamplingFailure aborts a render; EvaluationFailure is contained to a
single pixel by the engine.
"""


class TileMachineError(Exception):
    """Base class for all tilemachine errors."""

    @property
    def error_type(self) -> str:
        return type(self).__name__


# Raster Source Registry


class SourceError(TileMachineError):
    """A raster source could not be resolved."""


class SourceNotFound(SourceError):
    pass


class UnsupportedFormat(SourceError):
    pass


class DecodeFailure(SourceError):
    pass


# Bounds Resolver


class BoundsError(TileMachineError):
    """The inputs do not define a renderable extent."""


class EmptyIntersection(BoundsError):
    pass


class IncompatibleCRS(BoundsError):
    pass


# Script Compiler


class ScriptError(TileMachineError):
    """The script was rejected at compile time."""


class ScriptSyntaxError(ScriptError):
    """Malformed script text, with the offending position."""

    def __init__(
        self,
        message: str,
        line: int | None = None,
        column: int | None = None,
        source_line: str | None = None,
        length: int = 1,
    ) -> None:
        self.message = message
        self.line = line
        self.column = column
        self.source_line = source_line
        self.length = max(1, length)
        super().__init__(self._format())

    def _format(self) -> str:
        if self.line is None:
            return f"SyntaxError: {self.message}"
        out = f"script:{self.line}: SyntaxError: {self.message}"
        if self.source_line is not None and self.column is not None:
            underline = " " * (self.column - 1) + "^" * self.length
            out += f"\nat line:\n{self.source_line}\n{underline}"
        return out


class CapabilityViolation(ScriptError):
    """The script uses a construct outside the pure pixel sandbox."""

    def __init__(self, message: str, line: int | None = None) -> None:
        self.line = line
        super().__init__(f"script:{line}: {message}" if line is not None else message)


class UndeclaredInputReference(ScriptError):
    """The script references names that are not declared inputs."""

    def __init__(self, message: str, names: list[str]) -> None:
        self.names = names
        super().__init__(message)


# Pixel Evaluation Engine


class SamplingFailure(TileMachineError):
    """A declared source became unreadable during a render."""


class EvaluationFailure(TileMachineError):
    """A runtime fault while evaluating the script for one pixel."""


class RenderCancelled(TileMachineError):
    """The render was cancelled between row blocks."""
