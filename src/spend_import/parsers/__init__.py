"""Parser registry for bank CSV parsers.

Each parser is a module exposing a ``parse(text)`` function that returns a
:class:`~spend_import.models.ParseResult`.  The ``PARSERS`` dict maps parser
names (used in config and on the command line) to parse functions, and
``get_parser()`` provides a convenient lookup with a clear error on unknown
names.
"""

from __future__ import annotations

from collections.abc import Callable

from spend_import.models import ParseResult
from spend_import.parsers import fixed_columns, generic

PARSERS: dict[str, Callable[[str], ParseResult]] = {
    "generic": generic.parse,
    "fixed_columns": fixed_columns.parse,
}


def get_parser(name: str) -> Callable[[str], ParseResult]:
    """Look up a parser by name.

    Args:
        name: Parser name, e.g. "generic".

    Returns:
        The parse function for the named parser.

    Raises:
        KeyError: If no parser is registered under the given name.
    """
    return PARSERS[name]


def parse_bank_csv(text: str) -> ParseResult:
    """Parse *text* with the header-aware ``generic`` parser."""
    return generic.parse(text)
