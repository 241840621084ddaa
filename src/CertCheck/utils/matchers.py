from fnmatch import fnmatchcase

class NameMatcher:
    """Decides whether a configured name is covered by a name taken from the certificate (CN or SAN entry)."""
    mode = "literal"

    def matches(self, expected: str, candidate: str) -> bool:
        return expected == candidate

    def match_any(self, expected: str, candidates) -> bool:
        return any(self.matches(expected, candidate) for candidate in candidates if candidate)

class LiteralMatcher(NameMatcher):
    """Exact, case-sensitive equality. '*.example.com' only matches the literal string '*.example.com'."""

class GlobMatcher(NameMatcher):
    """The certificate entry is a shell pattern: '*.example.com' matches 'www.example.com' and 'a.b.example.com'."""
    mode = "glob"

    def matches(self, expected: str, candidate: str) -> bool:
        return expected == candidate or fnmatchcase(expected, candidate)

class WildcardMatcher(NameMatcher):
    """
    DNS wildcard semantics: a leading '*.' label matches exactly one left-most label, case-insensitively.

    '*.example.com' matches 'www.example.com' but neither 'example.com' nor 'a.b.example.com'.
    """
    mode = "wildcard"

    def matches(self, expected: str, candidate: str) -> bool:
        expected = expected.lower().rstrip(".")
        candidate = candidate.lower().rstrip(".")
        if expected == candidate:
            return True
        if not candidate.startswith("*.") or "*" in candidate[2:]:
            return False
        label, _, rest = expected.partition(".")
        return bool(label) and label != "*" and rest == candidate[2:]

MATCHERS = {matcher.mode: matcher for matcher in (LiteralMatcher, GlobMatcher, WildcardMatcher)}

def get_matcher(mode: str) -> NameMatcher:
    return MATCHERS[mode]()
