"""
JSON Repair Prompt

Used when a page generation response cannot be parsed, usually because the
output was cut off mid-component by the token limit. Only the tail of the raw
output is sent back.
"""

REPAIR_TAIL_CHARS = 2000

JSON_REPAIR_PROMPT = """A JSON response was truncated and cannot be parsed.

ERROR: {parse_error}

The JSON has this structure:
{{ "componentName": "...", "code": "full React component source code" }}

Here is the END of the truncated response (last ~{tail_chars} chars):
---
{tail}
---

Complete the truncated "code" value and close the JSON properly. The code was cut off mid-component. Finish the remaining JSX/logic naturally, close all open tags and braces, and end the component.

Return ONLY valid JSON (no markdown, no code fences):
{{ "componentName": "...", "code": "the COMPLETE repaired component code" }}"""


def build_repair_prompt(raw_output: str, parse_error: str) -> str:
    """Build the repair prompt from the last REPAIR_TAIL_CHARS of raw output."""
    return JSON_REPAIR_PROMPT.format(
        parse_error=parse_error,
        tail_chars=REPAIR_TAIL_CHARS,
        tail=raw_output[-REPAIR_TAIL_CHARS:],
    )
