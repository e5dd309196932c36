"""Error kinds raised by the pipeline stages."""


class LenderTrendsError(Exception):
    """Base exception for the analysis pipeline"""

    pass


class SchemaMismatchError(LenderTrendsError, ValueError):
    """An expected column is absent or holds the wrong type"""

    def __init__(self, columns, context: str = "table", reason: str = "Missing required columns"):
        self.columns = list(columns)
        self.reason = reason
        super().__init__(f"{reason} in {context}: {self.columns}")

    @property
    def missing_columns(self):
        return self.columns if self.reason.startswith("Missing") else []


class InsufficientDataError(LenderTrendsError, ValueError):
    """Not enough rows to fit the requested model"""

    pass


class ParseError(LenderTrendsError, ValueError):
    """A date or numeric field in a row could not be parsed"""

    def __init__(self, column: str, value, row_number: int):
        self.column = column
        self.value = value
        self.row_number = row_number
        super().__init__(
            f"Could not parse column '{column}' value {value!r} in row {row_number}"
        )
