"""StateClassifier for detecting runner state from terminal text.

Rule-based and pure: the same text always yields the same result. Temporal
reasoning (stuck, dead) lives in change_tracker, never here.
"""

from crewpilot.models.runner import ClassificationResult, RunnerState
from crewpilot.services import patterns


def extract_last_meaningful_line(lines: list[str]) -> str:
    """Return the last line longer than two characters, truncated.

    Args:
        lines: Candidate lines, oldest first.

    Returns:
        The line (stripped, at most DETAIL_MAX_CHARS long), or "".
    """
    meaningful = [line.strip() for line in lines if len(line.strip()) > 2]
    if not meaningful:
        return ""
    return meaningful[-1][: patterns.DETAIL_MAX_CHARS]


class StateClassifier:
    """Classifies captured runner output into a RunnerState.

    Detection is a priority-ordered rule list; the first rule that matches
    wins:
    1. Error (>= 2 error patterns, or any pattern plus a traceback)
    2. Question (selection prompts, numbered options, bracketed choices)
    3. Working (spinner glyphs, progress verbs, progress bars)
    4. Idle (agent prompt glyph with no spinner)
    5. Stopped (strict shell prompt on the last line)
    6. Idle, low confidence (any '>' or '$')
    7. Unknown
    """

    ERROR_BASE_CONFIDENCE = 0.9
    ERROR_STEP = 0.02
    QUESTION_BASE_CONFIDENCE = 0.85
    QUESTION_STEP = 0.05
    SPINNER_CONFIDENCE = 0.9
    VERB_CONFIDENCE = 0.85
    PROGRESS_CONFIDENCE = 0.75
    IDLE_CONFIDENCE = 0.85
    STOPPED_CONFIDENCE = 0.8
    FALLBACK_IDLE_CONFIDENCE = 0.6
    UNKNOWN_CONFIDENCE = 0.3

    def __init__(self, window_lines: int = patterns.CLASSIFY_WINDOW_LINES):
        """Initialize the classifier.

        Args:
            window_lines: Number of trailing non-blank lines inspected.
        """
        self.window_lines = window_lines

    def classify(self, text: str) -> ClassificationResult:
        """Classify terminal text.

        Never raises; empty or garbage input yields UNKNOWN.

        Args:
            text: Captured pane text, oldest line first.

        Returns:
            ClassificationResult with state, confidence and a one-line detail.
        """
        if not isinstance(text, str):
            text = ""

        lines = [line for line in text.split("\n") if line.strip()]
        window = "\n".join(lines[-self.window_lines :]).lower()
        last_few = lines[-patterns.DETAIL_WINDOW_LINES :]
        detail = extract_last_meaningful_line(last_few)

        result = (
            self._check_error(window)
            or self._check_question(window)
            or self._check_working(window)
            or self._check_idle(window)
            or self._check_stopped(last_few)
        )
        if result is not None:
            state, confidence = result
        elif ">" in window or "$" in window:
            state, confidence = RunnerState.IDLE, self.FALLBACK_IDLE_CONFIDENCE
        else:
            state, confidence = RunnerState.UNKNOWN, self.UNKNOWN_CONFIDENCE

        return ClassificationResult(
            state=state,
            confidence=min(max(confidence, 0.0), 1.0),
            detail=detail,
        )

    def _check_error(self, window: str) -> tuple[RunnerState, float] | None:
        matches = sum(1 for p in patterns.ERROR_PATTERNS if p.search(window))
        if matches == 0:
            return None
        if matches >= 2 or patterns.TRACEBACK_RE.search(window):
            confidence = self.ERROR_BASE_CONFIDENCE + (matches - 1) * self.ERROR_STEP
            return RunnerState.ERROR, min(confidence, 1.0)
        return None

    def _check_question(self, window: str) -> tuple[RunnerState, float] | None:
        matches = sum(1 for p in patterns.QUESTION_PATTERNS if p.search(window))
        if matches == 0:
            return None
        confidence = self.QUESTION_BASE_CONFIDENCE + (matches - 1) * self.QUESTION_STEP
        return RunnerState.QUESTION, min(confidence, 1.0)

    def _check_working(self, window: str) -> tuple[RunnerState, float] | None:
        # Glyphs are a stronger signal than words
        if patterns.SPINNER_RE.search(window):
            return RunnerState.WORKING, self.SPINNER_CONFIDENCE
        if any(verb in window for verb in patterns.PROGRESS_VERBS):
            return RunnerState.WORKING, self.VERB_CONFIDENCE
        if any(p.search(window) for p in patterns.PROGRESS_PATTERNS):
            return RunnerState.WORKING, self.PROGRESS_CONFIDENCE
        return None

    def _check_idle(self, window: str) -> tuple[RunnerState, float] | None:
        if patterns.PROMPT_GLYPH in window and not patterns.SPINNER_RE.search(window):
            return RunnerState.IDLE, self.IDLE_CONFIDENCE
        return None

    def _check_stopped(self, last_few: list[str]) -> tuple[RunnerState, float] | None:
        last_line = last_few[-1] if last_few else ""
        if any(p.search(last_line) for p in patterns.SHELL_PROMPT_PATTERNS):
            return RunnerState.STOPPED, self.STOPPED_CONFIDENCE
        return None


_default_classifier = StateClassifier()


def classify(text: str) -> ClassificationResult:
    """Classify terminal text with the default window size."""
    return _default_classifier.classify(text)
