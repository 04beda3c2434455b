"""System prompts and the tool catalog offered to tool-augmented adapters."""

from pathlib import Path
from typing import Optional

from .plans import PROPOSE_PLAN_TOOL
from .provider import ToolSpec

SYSTEM_PROMPT = """You are an expert AI coding assistant embedded in the user's running web app. \
You help users build, modify and understand their project.

Tools:
- Read, Write, Edit, MultiEdit: inspect and change files
- Bash: run shell commands in the project directory
- Glob, Grep, Ls: find files and search code
- ProposePlan: propose an implementation plan before complex work
- AskUser: ask clarifying questions with selectable options

Plan mode:
- When a request touches two or more files or needs several steps, call ProposePlan first.
- The plan is markdown: overview, step-by-step changes, files to create or modify, risks.
- After ProposePlan, stop and wait for approval or feedback. Do not edit files before approval.

Clarifying questions:
- When a request is ambiguous, call AskUser with 1-4 questions of 2-4 options each.
- Use plain text in every AskUser field; the UI renders it verbatim.
- After AskUser, stop and wait for the answers.

Language:
- Always answer in the language the user writes in."""

CREATION_PROMPT_EN = """You are in creation mode: the user has a fresh project and wants a polished, \
production-quality website built from scratch.

- Design deliberately: typography, spacing, colour and motion should serve the content.
- Produce complete, working code with real content and no placeholders.
- Verify the build compiles and fix any errors. Do not start the dev server and do not commit.
- Do not call ProposePlan; build directly. AskUser is available when details are unclear."""

CREATION_PROMPT_ZH = """你正处于创作模式：用户有一个全新的项目，希望从零构建精致、可用于生产的网站。

- 用心设计：字体、间距、色彩和动效都应服务于内容。
- 生成完整可运行的代码，使用真实内容，不留占位符。
- 验证构建无误并修复错误。不要启动开发服务器，也不要提交代码。
- 不要调用 ProposePlan，直接实现。细节不明确时可以使用 AskUser。
- 所有面向用户的界面文案使用中文。"""


def creation_prompt(language: Optional[str]) -> str:
    if language and language.lower().startswith("zh"):
        return CREATION_PROMPT_ZH
    return CREATION_PROMPT_EN


def build_system_prompt(project_dir: Path, creation_mode: bool = False, language: Optional[str] = None) -> str:
    base = creation_prompt(language) if creation_mode else SYSTEM_PROMPT
    return f"{base}\n\nThe user's project directory is: {project_dir}"


_QUESTION_SCHEMA = {
    "type": "object",
    "properties": {
        "question": {"type": "string", "description": "The full question text, plain text only."},
        "header": {"type": "string", "description": "Short tab label (max 12 chars)."},
        "multiSelect": {"type": "boolean"},
        "options": {
            "type": "array",
            "minItems": 2,
            "maxItems": 4,
            "items": {
                "type": "object",
                "properties": {
                    "label": {"type": "string"},
                    "description": {"type": "string"},
                },
                "required": ["label", "description"],
            },
        },
    },
    "required": ["question", "header", "multiSelect", "options"],
}

INTERACTIVE_TOOL_SPECS = [
    ToolSpec(
        name=PROPOSE_PLAN_TOOL,
        description=(
            "Propose a structured implementation plan before a complex task. Content is "
            "markdown covering the approach, steps, files touched and risks. After proposing, "
            "stop and wait for the user to approve or give feedback."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "A concise title for the plan"},
                "content": {"type": "string", "description": "The full markdown plan"},
            },
            "required": ["title", "content"],
        },
    ),
    ToolSpec(
        name="AskUser",
        description=(
            "Ask the user 1-4 clarifying questions, each with 2-4 options, before proceeding. "
            "All fields are plain text. After asking, stop and wait for the answers."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "questions": {"type": "array", "minItems": 1, "maxItems": 4, "items": _QUESTION_SCHEMA},
            },
            "required": ["questions"],
        },
    ),
]


def tool_catalog(creation_mode: bool = False) -> list[ToolSpec]:
    """Interactive tools the orchestrator intercepts.

    File and shell tools are supplied by the adapter itself; these are the
    ones whose calls become plan and question cards instead of executing.
    """
    if creation_mode:
        return [spec for spec in INTERACTIVE_TOOL_SPECS if spec.name != PROPOSE_PLAN_TOOL]
    return list(INTERACTIVE_TOOL_SPECS)


# ── User prompt augmentation ─────────────────────────────────────


def format_console_context(entries: list[dict]) -> str | None:
    """Render browser console entries as a context block for the prompt."""
    if not entries:
        return None

    parts = []
    for entry in entries:
        lines = [f"[{entry.get('level', 'error')}] {entry.get('message', '')}"]
        trace = entry.get("sourceTrace") or []
        if trace:
            lines.append("Trace:")
            for frame in trace:
                line = frame.get("line")
                lines.append(f"  {frame.get('source', '')}{f':{line}' if line else ''}")
        elif entry.get("source"):
            location = entry["source"]
            if entry.get("line"):
                location += f":{entry['line']}"
            if entry.get("column"):
                location += f":{entry['column']}"
            lines.append(f"Source: {location}")
        if entry.get("stack"):
            lines.append(f"Stack: {entry['stack']}")
        if (entry.get("count") or 1) > 1:
            lines.append(f"Occurred {entry['count']} times")
        parts.append("\n".join(lines))

    return "[Browser Console Errors]\n\n" + "\n\n".join(parts) + "\n\n"


def format_page_context(context: dict) -> str:
    lines = ["[Page Context]", f"URL: {context.get('url', '')}"]
    if context.get("title"):
        lines.append(f"Title: {context['title']}")
    if context.get("routeComponent"):
        lines.append(f"Route component: {context['routeComponent']}")
    return "\n".join(lines) + "\n\n"


def build_user_content(
    prompt: str,
    console_entries: Optional[list[dict]] = None,
    page_context: Optional[dict] = None,
    images: Optional[list[str]] = None,
):
    """Prepend page and console context to ``prompt``.

    Returns a plain string, or a list of text/image parts when images (data
    URLs) are attached.
    """
    text = prompt
    if page_context:
        text = format_page_context(page_context) + text
    console = format_console_context(console_entries or [])
    if console:
        text = console + text

    if not images:
        return text
    return [{"type": "text", "text": text}, *({"type": "image", "image": url} for url in images)]
