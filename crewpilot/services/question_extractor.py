"""Extract the pending question from a runner blocked on human input."""

from crewpilot.models.runner import DetectedQuestion, QuestionType
from crewpilot.services.patterns import OPTION_LINE_RE


def extract_question(text: str) -> DetectedQuestion | None:
    """Parse a question and its options out of terminal text.

    Numbered options ("❯ 1. Postgres") win: the question is the nearest
    non-empty line above the first option. Otherwise the last line ending in
    "?" is returned as a free-text question.

    Args:
        text: Captured pane text.

    Returns:
        DetectedQuestion, or None when nothing question-shaped was found. A
        QUESTION state with no extraction means "blocked, but unparseable".
    """
    if not isinstance(text, str) or not text:
        return None

    lines = text.split("\n")
    options: list[str] = []
    first_option_index = -1

    for i, line in enumerate(lines):
        match = OPTION_LINE_RE.match(line)
        if match:
            if first_option_index == -1:
                first_option_index = i
            options.append(match.group(1).strip())

    if options:
        question_text = next(
            (line.strip() for line in reversed(lines[:first_option_index]) if line.strip()),
            "",
        )
        if question_text:
            return DetectedQuestion(
                text=question_text,
                options=options,
                type=QuestionType.MULTIPLE_CHOICE,
            )

    question_lines = [line.strip() for line in lines if line.strip().endswith("?")]
    if question_lines:
        return DetectedQuestion(
            text=question_lines[-1],
            options=[],
            type=QuestionType.FREE_TEXT,
        )

    return None
