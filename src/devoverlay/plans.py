"""Tool names and plan-file rules used when intercepting tool calls."""

import re

PROPOSE_PLAN_TOOL = "ProposePlan"
ENTER_PLAN_MODE_TOOL = "EnterPlanMode"
EXIT_PLAN_MODE_TOOL = "ExitPlanMode"
WRITE_TOOL = "Write"

# Tool names differ between our own catalog and self-contained agents.
ASK_USER_TOOLS = {"AskUser", "AskUserQuestion"}
PLAN_TOOLS = {PROPOSE_PLAN_TOOL, ENTER_PLAN_MODE_TOOL, EXIT_PLAN_MODE_TOOL}
INTERACTIVE_TOOLS = ASK_USER_TOOLS | PLAN_TOOLS

_PLANS_DIR_RE = re.compile(r"\.claude/plans/[^/]+\.md$")
_PLAN_BASENAME_RE = re.compile(r"^\.?plan\.md$")


def is_plan_file(file_path: str) -> bool:
    """True for markdown files under ``.claude/plans/`` and for ``plan.md``."""
    normalized = file_path.replace("\\", "/")
    if _PLANS_DIR_RE.search(normalized):
        return True
    basename = normalized.rsplit("/", 1)[-1].lower()
    return bool(_PLAN_BASENAME_RE.match(basename))


def plan_file_write(tool_name: str, tool_input) -> str | None:
    """Return the content of a ``Write`` call that targets a plan file, else None."""
    if tool_name != WRITE_TOOL or not isinstance(tool_input, dict):
        return None
    file_path = tool_input.get("file_path") or tool_input.get("filePath") or ""
    content = tool_input.get("content")
    if not isinstance(file_path, str) or not isinstance(content, str):
        return None
    return content if is_plan_file(file_path) else None


def parse_plan_content(raw: str) -> tuple[str, str]:
    """Split plan markdown into ``(title, body)``.

    The first ``# heading`` becomes the title and is removed from the body.
    Without a heading the first line is the title.
    """
    lines = raw.split("\n")
    for idx, line in enumerate(lines):
        if re.match(r"^#\s+", line):
            title = re.sub(r"^#\s+", "", line).strip()
            body = "\n".join(lines[:idx] + lines[idx + 1:]).strip()
            return title, body
    title = lines[0].strip() if lines else ""
    return title or "Plan", "\n".join(lines[1:]).strip()
