from CertCheck.utils.errors import ErrorLevel, ParseError

# SSL Labs letter grades on a numeric scale; only the ordering matters.
# T (trust issues) and M (certificate name mismatch) rank with F.
SSL_LABS_GRADES = {
    'A+': 110,
    'A':  100,
    'A-': 90,
    'B':  80,
    'C':  70,
    'D':  60,
    'E':  50,
    'F':  0,
    'T':  0,
    'M':  0,
}

def convert_grade(grade: str) -> int:
    """
    Convert an SSL Labs letter grade to its numeric score.

    Args:
        grade:  Letter grade as reported by SSL Labs, optionally with a '+' or '-' modifier (e.g. 'A+', 'b').

    Returns:
        int: Score on the SSL_LABS_GRADES scale (higher is better).

    Raises:
        ParseError (UNKNOWN level) if the grade is not recognised, since no comparison can be made.
    """
    normalized = grade.strip().upper() if isinstance(grade, str) else ''
    if normalized not in SSL_LABS_GRADES:
        raise ParseError(f"Cannot convert SSL Labs grade '{grade}'", level=ErrorLevel.UNKNOWN)
    return SSL_LABS_GRADES[normalized]
