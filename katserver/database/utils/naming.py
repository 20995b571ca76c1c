"""
Column naming convention for fields without explicit column names
"""

import re

_UPPER = re.compile(r'(?<!^)([A-Z])')


def to_column_name(identifier: str) -> str:
    """
    Convert a field identifier into a column name.

    An underscore is inserted before every upper-case letter that is not the
    first character, then the whole string is lower-cased:
    ``messageGroup`` -> ``message_group``, ``userID`` -> ``user_i_d``.
    Snake-case identifiers pass through unchanged.

    Args:
        identifier: Field identifier

    Returns:
        Column name
    """
    return _UPPER.sub(r'_\1', identifier).lower()
