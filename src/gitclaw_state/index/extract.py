"""Field extraction for session index entries.

Everything here is mechanical: regexes, counts and paths. The same turns
always give the same fields.
"""

import re
from collections import Counter
from collections.abc import Iterable
from typing import Any

from gitclaw_state.models import TextBlock, ToolCallBlock, Turn

STOPWORDS = frozenset(
    """
    a about above after again against all also am an and any are as at be because been
    before being below between both but by can could did do does doing down during each
    few for from further had has have having he her here hers herself him himself his how
    i if in into is it its itself just let me more most my myself no nor not now of off on
    once only or other our ours ourselves out over own please same she should so some such
    than that the their theirs them themselves then there these they this those through to
    too under until up very was we were what when where which while who whom why will with
    would you your yours yourself yourselves get got make made use using need want like can't
    don't i'm it's that's there's what's let's thanks thank hi hello
    """.split()
)

TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9_'\-]*[a-z0-9]|[a-z0-9]")
PATH_SPLIT_RE = re.compile(r"[^a-z0-9]+")
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")
WHITESPACE_RE = re.compile(r"\s+")

DECISION_RE = re.compile(
    r"\b(?:decided|decision|we will|we'll|going with|go with|chose|chosen|opted|agreed|"
    r"settled on|instead of|rather than|let's use|will use|switched to|the approach is|"
    r"the fix is|the plan is)\b",
    re.IGNORECASE,
)

# Tool-call argument keys whose values name files
PATH_KEYS = (
    "path",
    "file_path",
    "filePath",
    "file",
    "filename",
    "notebook_path",
    "target_file",
    "paths",
    "files",
)

MAX_PATH_CHARS = 300
MAX_DECISION_CHARS = 200
STEM_SUFFIXES = ("ing", "ed", "es", "s", "e")


def stem(token: str) -> str:
    """Strip a common English suffix so "caching", "cached" and "cache" meet."""
    for suffix in STEM_SUFFIXES:
        if token.endswith(suffix) and len(token) - len(suffix) >= 3:
            return token[: -len(suffix)]
    return token


def tokenize(text: str, min_length: int = 2) -> list[str]:
    """Lowercase word tokens without stopwords."""
    return [
        t
        for t in TOKEN_RE.findall(text.lower())
        if len(t) >= min_length and t not in STOPWORDS
    ]


def stems(text: str) -> set[str]:
    return {stem(t) for t in tokenize(text)}


def path_stems(path: str) -> set[str]:
    return {stem(p) for p in PATH_SPLIT_RE.split(path.lower()) if len(p) >= 2}


def _truncate(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) > limit:
        return text[:limit].rstrip() + "..."
    return text


def first_text(turns: Iterable[Turn], role: str) -> str:
    for turn in turns:
        if turn.role != role:
            continue
        for block in turn.blocks:
            if isinstance(block, TextBlock) and block.text.strip():
                return block.text
    return ""


def extract_title(turns: list[Turn], limit: int = 100) -> str:
    """First line of the first user text."""
    text = first_text(turns, "user") or first_text(turns, "assistant")
    if not text:
        return ""
    first_line = next(line for line in text.splitlines() if line.strip())
    return _truncate(first_line, limit)


def extract_summary(turns: list[Turn], limit: int = 300) -> str:
    """Bounded prefix of the first assistant text."""
    text = first_text(turns, "assistant")
    return _truncate(WHITESPACE_RE.sub(" ", text), limit)


def extract_keywords(turns: list[Turn], limit: int = 20) -> list[str]:
    """Most frequent user tokens, ties broken alphabetically."""
    counts: Counter[str] = Counter()
    for turn in turns:
        if turn.role != "user":
            continue
        counts.update(t for t in tokenize(turn.text, min_length=3) if not t.isdigit())
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return sorted(token for token, _ in ranked[:limit])


def _paths_in(value: Any) -> list[str]:
    if isinstance(value, str):
        value = value.strip()
        if value and len(value) <= MAX_PATH_CHARS and "\n" not in value:
            return [value]
        return []
    if isinstance(value, list):
        return [p for item in value for p in _paths_in(item) if isinstance(item, str)]
    return []


def extract_files(turns: list[Turn], limit: int = 50) -> list[str]:
    """File paths named by tool-call arguments."""
    seen: list[str] = []
    for turn in turns:
        for block in turn.blocks:
            if not isinstance(block, ToolCallBlock) or not isinstance(block.arguments, dict):
                continue
            for key in PATH_KEYS:
                for path in _paths_in(block.arguments.get(key)):
                    if path not in seen:
                        seen.append(path)
    return sorted(seen[:limit])


def extract_decisions(turns: list[Turn], limit: int = 10) -> list[str]:
    """Sentences that state a decision, in conversation order."""
    decisions: list[str] = []
    for turn in turns:
        for block in turn.blocks:
            if not isinstance(block, TextBlock):
                continue
            for sentence in SENTENCE_SPLIT_RE.split(block.text):
                sentence = WHITESPACE_RE.sub(" ", sentence).strip()
                if not sentence or not DECISION_RE.search(sentence):
                    continue
                sentence = _truncate(sentence, MAX_DECISION_CHARS)
                if sentence not in decisions:
                    decisions.append(sentence)
                if len(decisions) >= limit:
                    return decisions
    return decisions
