"""Heuristic pattern tables for runner state detection.

Every consumer of terminal text (watch loop, heartbeat monitor, check command,
HTTP API) classifies through these tables so the detection rules cannot drift
apart.
"""

import re

# Braille spinner frames, hourglasses and quarter circles drawn by the agent
SPINNER_CHARS = "⌛⏳⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏◐◓◑◒"

SPINNER_RE = re.compile(f"[{re.escape(SPINNER_CHARS)}]")

# Agent's own input prompt glyph
PROMPT_GLYPH = "❯"

# Markers that prove the agent (not a bare shell) owns the pane
AGENT_MARKERS = (PROMPT_GLYPH, "claude")

ERROR_PATTERNS = [
    re.compile(r"\berror\b", re.IGNORECASE),
    re.compile(r"\bexception\b", re.IGNORECASE),
    re.compile(r"\bfailed\b", re.IGNORECASE),
    re.compile(r"\btraceback\b", re.IGNORECASE),
    re.compile(r"\bundefined\b.*\berror\b", re.IGNORECASE),
    re.compile(r"\bsyntaxerror\b", re.IGNORECASE),
    re.compile(r"\buncaught\b", re.IGNORECASE),
]

# A single traceback match is enough to confirm an error
TRACEBACK_RE = re.compile(r"traceback", re.IGNORECASE)

QUESTION_PATTERNS = [
    re.compile(r"enter to select", re.IGNORECASE),
    re.compile(r"tab/arrow keys to navigate", re.IGNORECASE),
    re.compile(r"use arrow keys", re.IGNORECASE),
    re.compile(rf"{PROMPT_GLYPH}\s*\d+\."),
    # "? What now? [Yes/No]"
    re.compile(r"\?\s*.+\s*\[.*\]"),
    # "(2/4)" step counter on a multi-question form
    re.compile(r"\(\d+/\d+\)"),
]

PROGRESS_VERBS = (
    "proofing",
    "mustering",
    "thinking",
    "working",
    "processing",
    "analyzing",
    "generating",
    "loading",
    "compiling",
    "building",
    "installing",
    "downloading",
    "searching",
    "indexing",
)

PROGRESS_PATTERNS = [
    re.compile(r"\d+%"),
    re.compile(r"\[\s*#+\s*\]"),
    re.compile(r"progress", re.IGNORECASE),
    re.compile(r"completed?\s*\d+\s*/\s*\d+", re.IGNORECASE),
]

# Deliberately strict: agent output often contains a stray "$"
SHELL_PROMPT_PATTERNS = [
    re.compile(r"^\$(\s|$)"),
    re.compile(r"^bash-[\d.]+\$"),
    re.compile(r"^\w+@[\w.-]+:[/\w\s~.-]*[$#]"),
    re.compile(r"^zsh\s*\$"),
    re.compile(r"^sh\s*\$"),
]

# Numbered option line: optional marker glyphs, "N.", whitespace, label
OPTION_LINE_RE = re.compile(rf"^[{PROMPT_GLYPH}>›\s]*\d+\.\s+(.+)")

# Windows used by the classifier
CLASSIFY_WINDOW_LINES = 30
DETAIL_WINDOW_LINES = 5
DETAIL_MAX_CHARS = 100
