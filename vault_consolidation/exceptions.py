"""
Consolidation Error Taxonomy

Fatal errors abort a run before any output is written:
- MissingInputError: required file or directory is absent
- MissingColumnError: required column not found in a tabular input
- InvalidPolicyError: a policy setting has an unusable value

Per-item problems (failed price chunk, unmapped asset, unknown price) are NOT
exceptions. They are logged and surface as 'unknown' / UNKNOWN_PRICE state.
"""

from pathlib import Path
from typing import List, Optional, Union


class ConsolidationError(Exception):
    """Base class for fatal consolidation errors"""


class MissingInputError(ConsolidationError):
    """Required input file or directory does not exist"""

    def __init__(self, path: Union[str, Path], hint: Optional[str] = None):
        self.path = Path(path)
        self.hint = hint
        message = f"Missing required input: {self.path}"
        if hint:
            message += f" ({hint})"
        super().__init__(message)


class MissingColumnError(ConsolidationError):
    """Required column could not be resolved from a header"""

    def __init__(self, source: Union[str, Path], field: str, header: List[str]):
        self.source = str(source)
        self.field = field
        self.header = list(header)
        super().__init__(
            f"{self.source} missing column for '{field}'. Header: {','.join(self.header)}"
        )


class InvalidPolicyError(ConsolidationError):
    """Policy setting has an unusable value"""

    def __init__(self, setting: str, value, expected: str = "a finite number >= 0"):
        self.setting = setting
        self.value = value
        super().__init__(f"{setting} must be {expected} (got {value!r})")
