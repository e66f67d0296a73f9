"""
Spreadsheet parsers module.
"""

from parsers.case_sheet_parser import (
    parse_case_sheet,
    normalize_row,
    CaseSheetParseResult,
    ParsedRow,
)

__all__ = [
    "parse_case_sheet",
    "normalize_row",
    "CaseSheetParseResult",
    "ParsedRow",
]
