"""
Enums for layer configuration.
"""

from enum import Enum

# ==============================================================================
# Enums for layer configuration
# ==============================================================================


class PermuteMode(str, Enum):
    """Channel permutation schemes of the recursive HINT coupling layer.

    - ``NONE``: no permutation.
    - ``LOWER``: permute the lower (b) half before its own recursion, at
      every level.
    - ``FULL``: permute the whole input once on entry.
    - ``BOTH``: permute every node input on entry and undo the permutation
      on the concatenated node output.
    """

    NONE = "none"
    LOWER = "lower"
    BOTH = "both"
    FULL = "full"

    @classmethod
    def parse(cls, value) -> "PermuteMode":
        """Convert a string (or enum member) to a ``PermuteMode``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Unknown permute mode '{value}'. "
                f"Choose from: {[m.value for m in cls]}"
            ) from None
