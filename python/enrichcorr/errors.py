"""
Error types for the EnrichCorr pipeline.

Fatal conditions (empty input, no scorable gene sets, no shared samples) abort
the run before any output is written. Identifier misses are recovered by the
callers that batch-map genes and only surface as counts in the mapping report.
"""


class EnrichCorrError(Exception):
    """Base class for all pipeline errors"""


class EmptyInputError(EnrichCorrError, ValueError):
    """Expression matrix has no usable rows or columns after filtering"""


class NoScorableGeneSetsError(EnrichCorrError, ValueError):
    """Every candidate gene set fell below the minimum size"""


class DimensionMismatchError(EnrichCorrError, ValueError):
    """Reference vector and score matrix share no samples"""


class IdentifierMappingError(EnrichCorrError, KeyError):
    """A gene label has no identifier in the target namespace"""

    def __init__(self, label: str, target: str = 'symbol'):
        self.label = label
        self.target = target
        super().__init__(f"No {target} identifier for gene '{label}'")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]
