"""
Text diff engine: token-level comparison of two requirement texts.

Texts are split into word, punctuation and whitespace tokens so that joining
the tokens of either side reproduces it exactly. An LCS alignment over the
tokens yields ordered unchanged/added/removed/modified segments; each changed
segment is graded by the rule table in ``grade_segment``.

Grading is a keyword heuristic, not legal interpretation.
"""
import re
from dataclasses import dataclass, field

from crosswalk.models.enums import SIGNIFICANCE_RANK, SegmentKind, Significance

TOKEN_RE = re.compile(r"\s+|\w+(?:[-']\w+)*|[^\w\s]")
WORD_RE = re.compile(r"\w+(?:[-']\w+)*")
NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")

MODAL_TOKENS = frozenset({
    "must", "shall", "required", "require", "requires", "mandatory", "prohibited",
})
OBLIGATION_VERBS = frozenset({
    "implement", "enforce", "ensure", "maintain", "establish", "verify", "encrypt",
    "review", "document", "monitor", "restrict", "protect", "retain", "audit",
    "authenticate", "log", "test", "train",
})
OBLIGATION_TOKENS = MODAL_TOKENS | OBLIGATION_VERBS


@dataclass
class TextDiffSegment:
    kind: SegmentKind
    old_text: str = ""
    new_text: str = ""
    significance: Significance = Significance.COSMETIC


@dataclass
class TextDiff:
    segments: list[TextDiffSegment] = field(default_factory=list)
    significance: Significance = Significance.COSMETIC
    added_words: int = 0
    removed_words: int = 0

    @property
    def has_changes(self) -> bool:
        return any(s.kind != SegmentKind.UNCHANGED for s in self.segments)

    @property
    def old_text(self) -> str:
        return "".join(s.old_text for s in self.segments)

    @property
    def new_text(self) -> str:
        return "".join(s.new_text for s in self.segments)


def tokenize(text: str) -> list[str]:
    return TOKEN_RE.findall(text or "")


def words(text: str) -> list[str]:
    return [w.lower() for w in WORD_RE.findall(text or "")]


def numbers(text: str) -> set[str]:
    return {n.replace(",", ".") for n in NUMBER_RE.findall(text or "")}


# ═══════════════════ ALIGNMENT ═══════════════════

def _lcs_ops(old: list[str], new: list[str]) -> list[tuple[str, str]]:
    """Edit script of ("=", tok) / ("-", tok) / ("+", tok) over two token lists."""
    prefix = 0
    while prefix < len(old) and prefix < len(new) and old[prefix] == new[prefix]:
        prefix += 1
    suffix = 0
    while (
        suffix < len(old) - prefix
        and suffix < len(new) - prefix
        and old[-1 - suffix] == new[-1 - suffix]
    ):
        suffix += 1

    a = old[prefix:len(old) - suffix]
    b = new[prefix:len(new) - suffix]
    n, m = len(a), len(b)

    # dp[i][j] = LCS length of a[i:] and b[j:]
    dp = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n - 1, -1, -1):
        row, below = dp[i], dp[i + 1]
        for j in range(m - 1, -1, -1):
            if a[i] == b[j]:
                row[j] = below[j + 1] + 1
            else:
                row[j] = max(below[j], row[j + 1])

    ops: list[tuple[str, str]] = [("=", t) for t in old[:prefix]]
    i = j = 0
    while i < n and j < m:
        if a[i] == b[j]:
            ops.append(("=", a[i]))
            i += 1
            j += 1
        elif dp[i + 1][j] >= dp[i][j + 1]:
            ops.append(("-", a[i]))
            i += 1
        else:
            ops.append(("+", b[j]))
            j += 1
    ops.extend(("-", t) for t in a[i:])
    ops.extend(("+", t) for t in b[j:])
    ops.extend(("=", t) for t in old[len(old) - suffix:])
    return ops


def _runs(ops: list[tuple[str, str]]) -> list[list]:
    """Group an edit script into [equal?, old_tokens, new_tokens] runs."""
    runs: list[list] = []
    for op, tok in ops:
        equal = op == "="
        if not runs or runs[-1][0] != equal:
            runs.append([equal, [], []])
        run = runs[-1]
        if op in ("=", "-"):
            run[1].append(tok)
        if op in ("=", "+"):
            run[2].append(tok)
    return runs


def _absorb_whitespace(runs: list[list]) -> list[list]:
    """Fold whitespace-only equal runs sitting between two changes into one change."""
    out: list[list] = []
    for run in runs:
        if (
            not run[0]
            and len(out) >= 2
            and out[-1][0]
            and not out[-2][0]
            and all(t.isspace() for t in out[-1][1])
        ):
            gap = out.pop()
            prev = out[-1]
            prev[1].extend(gap[1] + run[1])
            prev[2].extend(gap[2] + run[2])
            continue
        out.append(run)
    return out


# ═══════════════════ GRADING ═══════════════════

def grade_segment(
    old_text: str,
    new_text: str,
    old_context: frozenset[str] = frozenset(),
    new_context: frozenset[str] = frozenset(),
) -> Significance:
    """Grade one changed span.

    Rules, first match wins:
      1. same words ignoring case, punctuation and whitespace -> cosmetic
      2. a number on the old side changed or disappeared -> breaking
      3. an obligation token (modal or obligation verb) dropped -> breaking
      4. a modal or a number introduced -> substantive
      5. an obligation verb introduced -> substantive
      6. anything else -> clarification

    ``old_context``/``new_context`` are the word sets of the full texts; a
    token that merely moved to another span is not counted as dropped or new.
    """
    old_words, new_words = words(old_text), words(new_text)
    if old_words == new_words:
        return Significance.COSMETIC

    old_set, new_set = set(old_words), set(new_words)
    old_nums, new_nums = numbers(old_text), numbers(new_text)

    if old_nums and old_nums != new_nums:
        return Significance.BREAKING

    dropped = (old_set & OBLIGATION_TOKENS) - new_set - new_context
    if dropped:
        return Significance.BREAKING

    introduced = new_set - old_set - old_context
    if introduced & MODAL_TOKENS or new_nums - old_nums:
        return Significance.SUBSTANTIVE
    if introduced & OBLIGATION_VERBS:
        return Significance.SUBSTANTIVE

    return Significance.CLARIFICATION


def max_significance(values) -> Significance:
    return max(values, key=SIGNIFICANCE_RANK.__getitem__, default=Significance.COSMETIC)


def diff(old_text: str, new_text: str) -> TextDiff:
    """Segment-level diff of two texts with per-segment and overall significance."""
    old_text = old_text or ""
    new_text = new_text or ""
    runs = _absorb_whitespace(_runs(_lcs_ops(tokenize(old_text), tokenize(new_text))))

    old_context = frozenset(words(old_text))
    new_context = frozenset(words(new_text))

    result = TextDiff()
    for equal, old_tokens, new_tokens in runs:
        old_part, new_part = "".join(old_tokens), "".join(new_tokens)
        if equal:
            result.segments.append(TextDiffSegment(SegmentKind.UNCHANGED, old_part, new_part))
            continue

        if old_tokens and new_tokens:
            kind = SegmentKind.MODIFIED
        elif new_tokens:
            kind = SegmentKind.ADDED
        else:
            kind = SegmentKind.REMOVED
        significance = grade_segment(old_part, new_part, old_context, new_context)
        result.segments.append(TextDiffSegment(kind, old_part, new_part, significance))
        result.added_words += len(words(new_part))
        result.removed_words += len(words(old_part))

    result.significance = max_significance(s.significance for s in result.segments)
    return result
