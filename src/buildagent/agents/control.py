"""控制工具定义

控制工具由编排引擎自身解释，从不转发给工具注册表。
参数用 pydantic 模型描述，公布给模型的 schema 由模型生成。
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..types import ToolDefinition
from .models import TaskStatus

CREATE_TASKS = "create_tasks"
UPDATE_TASK = "update_task"
REQUEST_REVIEW = "request_review"
FINAL_RESPONSE = "final_response"

CONTROL_TOOL_NAMES = frozenset({CREATE_TASKS, UPDATE_TASK, REQUEST_REVIEW, FINAL_RESPONSE})


class CreateTasksParams(BaseModel):
    tasks: list[str] = Field(default_factory=list, description="List of task descriptions")

    @field_validator("tasks", mode="before")
    @classmethod
    def _coerce_tasks(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class UpdateTaskParams(BaseModel):
    task_id: str = Field(description="Task ID to update")
    status: TaskStatus = Field(description="New task status")
    result: str | None = Field(default=None, description="Result or notes for the task")


class RequestReviewParams(BaseModel):
    summary: str = Field(default="", description="Summary of what was done")
    files_changed: list[str] = Field(default_factory=list, description="Files that were modified")

    @field_validator("files_changed", mode="before")
    @classmethod
    def _coerce_files(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class FinalResponseParams(BaseModel):
    message: str = Field(description="Final message to the user")
    summary: str | None = Field(default=None, description="Summary of what was accomplished")
    next_steps: list[str] = Field(default_factory=list, description="Suggested next actions")


CONTROL_PARAMS: dict[str, type[BaseModel]] = {
    CREATE_TASKS: CreateTasksParams,
    UPDATE_TASK: UpdateTaskParams,
    REQUEST_REVIEW: RequestReviewParams,
    FINAL_RESPONSE: FinalResponseParams,
}

_DESCRIPTIONS = {
    CREATE_TASKS: "Create a list of tasks to complete for this request",
    UPDATE_TASK: "Update the status of a task (pending, in_progress, completed, failed)",
    REQUEST_REVIEW: "Request the reviewer to check your work before finishing",
    FINAL_RESPONSE: "Send the final response to the user when all work is complete",
}


def _schema(model: type[BaseModel]) -> dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    return schema


def control_tool_definitions() -> list[ToolDefinition]:
    """控制工具描述（固定顺序）"""
    return [
        ToolDefinition(name=name, description=_DESCRIPTIONS[name], parameters=_schema(model))
        for name, model in CONTROL_PARAMS.items()
    ]


def is_control_tool(name: str) -> bool:
    return name in CONTROL_TOOL_NAMES
