"""任务跟踪器

会话内子任务的纯状态容器，只在会话自己的编排循环内修改，无需加锁。
"""

from loguru import logger

from .models import Task, TaskStatus


class TaskTracker:
    """任务跟踪器

    任务 ID 在会话内确定性生成（task_1, task_2, ...），
    任务只能创建与更新，从不删除。
    """

    def __init__(self, prefix: str = "task"):
        self._tasks: dict[str, Task] = {}
        self._counter = 0
        self._prefix = prefix

    def create(self, contents: list[str]) -> list[Task]:
        """按输入顺序创建 pending 任务

        Args:
            contents: 任务内容列表

        Returns:
            新建的任务列表
        """
        created = []
        for content in contents:
            self._counter += 1
            task = Task(id=f"{self._prefix}_{self._counter}", content=str(content))
            self._tasks[task.id] = task
            created.append(task)
        logger.debug(f"Created {len(created)} tasks")
        return created

    def update(
        self,
        task_id: str,
        status: TaskStatus | str,
        result: str | None = None,
    ) -> Task | None:
        """原地更新任务

        相同参数重复调用不改变状态。未知任务 ID 返回 None。

        Raises:
            ValueError: 状态值非法
        """
        task = self._tasks.get(task_id)
        if task is None:
            return None

        task.status = TaskStatus(status)
        if result is not None:
            task.result = result
        return task

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def list_tasks(self) -> list[Task]:
        """按创建顺序返回全部任务"""
        return list(self._tasks.values())

    def summary(self) -> dict[str, int]:
        """各状态任务数量"""
        counts = {status.value: 0 for status in TaskStatus}
        for task in self._tasks.values():
            counts[task.status.value] += 1
        return counts

    def to_list(self) -> list[dict]:
        return [task.to_dict() for task in self._tasks.values()]

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks
