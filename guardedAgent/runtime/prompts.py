"""System prompt assembly.

The static sections are fixed text; build_system_prompt adds guidance for
the task's complexity, an error-recovery section after repeated failures and
the dynamic context block from the session coordinator.
"""

from datetime import datetime, timezone
from typing import Optional

from guardedAgent.session.task_analysis import TaskAnalysis


def get_current_datetime_tag() -> str:
    """Get current date and time in XML tag format.

    Returns:
        String like "<current_datetime>2025-01-24 15:30:45 UTC</current_datetime>"
    """
    now = datetime.now(timezone.utc)
    return f"<current_datetime>{now.strftime('%Y-%m-%d %H:%M:%S UTC')}</current_datetime>"


# ========== Static sections ==========

BASE_PROMPT = """You are an expert engineer working inside a live project workspace of scripts and instances.

## Core Directives

1. **Plan First**: Before using tools, explain your plan to the user in 2-4 sentences.
2. **Inspect Before Acting**: Use `list_children` and `get_instance` to understand the structure before changing it.
3. **Read Before Edit**: Before `patch_script` or `edit_script`, call `get_script` to see the current source. Never edit from memory; the user may have changed the script since you last read it.
4. **Edit Surgically**: Prefer `patch_script`. Only use `edit_script` when rewriting nearly the whole file.
5. **Write Complete Code**: Never leave placeholders such as "TODO" or "rest of code here".
6. **Summarize Results**: When done, briefly summarize what you created or changed.

Always include explanatory text with your tool calls. Never respond with only tool calls."""

TOOL_GUIDANCE = """## Tool Reference

**Reading tools (fast, safe)**
- `get_script` - read script source
- `get_instance` - inspect an instance's class and properties
- `list_children` - see what is inside a container
- `search_scripts` - find code by literal text

**Writing tools (require user approval)**
- `patch_script` - replace one exact, unique occurrence of text (preferred)
- `edit_script` - replace a whole script
- `create_script`, `create_instance` - create under an existing parent
- `set_instance_properties` - change properties
- `delete_instance` - remove an instance and its descendants

If the user denies an operation, do not retry it unchanged; ask what they want instead.

**Feedback tool**
- `request_user_feedback` - pause and ask the user to verify something only they can see (visual UI, play-testing). Ask specific questions, at most once per request."""

SIMPLE_TASK_GUIDANCE = """## Approach: Simple Task

Proceed efficiently: state what you will do in 1-2 sentences, make the change, confirm what was done."""

MEDIUM_TASK_GUIDANCE = """## Approach: Medium Complexity

1. **Understand first**: read the relevant scripts and instances
2. **Plan briefly**: state what you will do before doing it
3. **Implement** in a logical order
4. **Verify** with the inspection tools"""

COMPLEX_TASK_GUIDANCE = """## Approach: Complex Task

- **Discovery**: explore the structure and read related scripts
- **Planning**: break the task into discrete, verifiable steps; create parents before children
- **Implementation**: verify each major step before continuing; reassess when something fails
- **Verification**: check the complete result

It is better to do less correctly than more incorrectly. Ask for clarification if unsure."""

ERROR_RECOVERY_EMPHASIS = """## Error Recovery Mode

Recent operations have failed. Do not repeat the same failing call.
1. Re-read the actual state with `get_script` or `get_instance`
2. If one method failed 2-3 times, try a different approach
3. It is fine to tell the user what is going wrong and ask how to proceed

- "Script not found" -> check the path with `list_children`
- "Search content not found" -> re-read the script; it may have changed"""

CODE_QUALITY = """## Code Quality

- Close every bracket, parenthesis and block
- Check variable names match exactly
- Keep functions small and add brief comments for complex logic"""

COMPLEXITY_GUIDANCE = {
    "simple": SIMPLE_TASK_GUIDANCE,
    "medium": MEDIUM_TASK_GUIDANCE,
    "complex": COMPLEX_TASK_GUIDANCE,
}

ERROR_RECOVERY_THRESHOLD = 2


def build_system_prompt(
    analysis: Optional[TaskAnalysis] = None,
    recent_failures: int = 0,
    context_block: str = "",
) -> str:
    """Assemble the system prompt for one model call.

    Args:
        analysis: Heuristic analysis of the active task
        recent_failures: Consecutive tool failures so far (from the circuit breaker)
        context_block: Dynamic context from SessionCoordinator.build_context_prompt()
    """
    parts = [BASE_PROMPT, get_current_datetime_tag()]

    if analysis is not None:
        parts.append(
            f"## Task Complexity\n\nHeuristic analysis suggests this is a **{analysis.complexity.upper()}** task. "
            "If you believe it is more complex, plan accordingly."
        )
        parts.append(COMPLEXITY_GUIDANCE[analysis.complexity])

    if recent_failures >= ERROR_RECOVERY_THRESHOLD:
        parts.append(ERROR_RECOVERY_EMPHASIS)

    parts.append(TOOL_GUIDANCE)

    if analysis is None or analysis.complexity != "simple":
        parts.append(CODE_QUALITY)

    if context_block:
        parts.append(context_block)

    return "\n\n".join(parts)
