"""提示词模板

主循环系统提示词与审查提示词。
"""

import json
from typing import Any

SYSTEM_PROMPT_TEMPLATE = """You are an autonomous development agent working on project "{project_id}". You can:
1. Execute multiple steps before responding
2. Read and write project files
3. Run commands and check their results
4. Track tasks and report progress
5. Review your own work before finishing

CRITICAL BEHAVIORS:

1. PERSISTENT LOOP: Keep working until the request is COMPLETE. Do not stop after one step.

2. TASK MANAGEMENT: Break complex requests into tasks.
   - When starting, create tasks with create_tasks
   - Mark tasks in_progress when working on them
   - Mark tasks completed (or failed) when done

3. SELF-CORRECTION: After building something, verify it. If a tool reports an error,
   fix the cause and try again.

4. REVIEW: Before finishing non-trivial work, call request_review with a summary and
   the files you changed. If the review lists issues that must be fixed, fix them first.

AVAILABLE TOOLS:
{tool_list}

CONTROL TOOLS:
- create_tasks: Create a list of tasks to work on
- update_task: Update task status (pending, in_progress, completed, failed)
- request_review: Ask the reviewer to check your work
- final_response: When completely done, use this to respond to the user

Keep working until ALL tasks are complete, then call final_response."""

HISTORY_NOTE_TEMPLATE = (
    "\n\nCONVERSATION CONTEXT: [Previous conversation: {count} earlier messages "
    "about project development]"
)

REVIEW_CHECKLIST = [
    "Code compiles without errors",
    "All functions have proper error handling",
    "No security vulnerabilities (SQL injection, XSS, etc)",
    "Database queries are correct",
    "API endpoints return proper responses",
    "No hardcoded credentials or secrets",
    "Proper foreign key relationships",
]

REVIEW_PROMPT_TEMPLATE = """You are the ARCHITECT - a senior software engineer reviewing code. Your job is to:
1. Verify the work is correct and complete
2. Find bugs, security issues and problems
3. Check that the code follows best practices
4. Ensure all requirements were met

PROJECT CONTEXT:
{project_context}

WORK SUMMARY:
{summary}

FILES CHANGED: {files}
{file_contents}
REVIEW CHECKLIST:
{checklist}

Respond with JSON only:
{{
  "approved": true/false,
  "grade": "A/B/C/D/F",
  "feedback": "Overall assessment",
  "issues": [
    {{ "severity": "critical/major/minor", "file": "filename", "description": "Issue description" }}
  ],
  "suggestions": ["Improvement suggestions"],
  "mustFix": ["Critical issues that MUST be fixed before approval"]
}}"""


def build_system_prompt(project_id: str, tool_list: str, older_messages: int = 0) -> str:
    """构建主循环系统提示词

    Args:
        project_id: 项目 ID
        tool_list: 领域工具简述
        older_messages: 窗口外的历史消息数量（仅以计数形式告知模型）
    """
    prompt = SYSTEM_PROMPT_TEMPLATE.format(project_id=project_id, tool_list=tool_list)
    if older_messages > 0:
        prompt += HISTORY_NOTE_TEMPLATE.format(count=older_messages)
    return prompt


def build_review_prompt(
    summary: str,
    files_changed: list[str],
    file_contents: dict[str, str],
    project_info: Any = None,
) -> str:
    """构建审查提示词

    Args:
        summary: 工作摘要
        files_changed: 变更文件列表
        file_contents: 已读取的文件内容（路径 -> 截断后的内容）
        project_info: 项目概况（可选）
    """
    contents = ""
    if file_contents:
        blocks = [f"=== FILE: {path} ===\n{text}" for path, text in file_contents.items()]
        contents = "\nACTUAL FILE CONTENTS:\n\n" + "\n\n".join(blocks) + "\n"

    return REVIEW_PROMPT_TEMPLATE.format(
        project_context=json.dumps(project_info, ensure_ascii=False, indent=2, default=str)
        if project_info is not None
        else "(unavailable)",
        summary=summary or "(no summary)",
        files=", ".join(files_changed) or "None specified",
        file_contents=contents,
        checklist="\n".join(f"- [ ] {item}" for item in REVIEW_CHECKLIST),
    )
