"""审查子流程

一次有界、只读的审计：读取少量变更文件与项目概况，按固定清单发起
一次非流式模型调用，解析出 Verdict。审查不占用主循环的迭代预算。
"""

from loguru import logger

from ..core.exceptions import ProviderError
from ..infrastructure.event_bus import AgentEventType, EventBus
from ..providers.base import ProviderAdapter
from ..tools.registry import ToolRegistry
from ..types import Message, MessageRole, ToolContext
from .models import Verdict
from .prompts import build_review_prompt
from .result_parser import extract_json_object

REVIEW_TEMPERATURE = 0.1


class ReviewSubroutine:
    """审查子流程

    Usage:
        review = ReviewSubroutine(provider, registry, bus)
        verdict = await review.review("added table X", ["db/schema.sql"], context)
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        registry: ToolRegistry,
        event_bus: EventBus,
        max_files: int = 5,
        file_chars: int = 5000,
    ):
        self.provider = provider
        self.registry = registry
        self.event_bus = event_bus
        self.max_files = max_files
        self.file_chars = file_chars

    async def review(
        self,
        summary: str,
        files_changed: list[str],
        context: ToolContext,
    ) -> Verdict:
        """执行审查

        解析失败降级为 approved/B，模型调用失败降级为 approved/?，
        都不会让运行失败。

        Args:
            summary: 工作摘要
            files_changed: 变更文件列表
            context: 工具上下文

        Returns:
            Verdict
        """
        await self.event_bus.emit_async(
            AgentEventType.THINKING, {"message": "Reviewer is checking your work..."}
        )

        file_contents = await self._read_files(files_changed, context)
        project_info = await self._project_info(context)
        prompt = build_review_prompt(summary, files_changed, file_contents, project_info)

        try:
            response = await self.provider.generate(
                [Message(role=MessageRole.USER, content=prompt)],
                [],
                stream=False,
            )
        except ProviderError as e:
            logger.warning(f"Review skipped: {e}")
            return Verdict(approved=True, grade="?", feedback=f"Review skipped due to error: {e}")

        content = response.content
        await self.event_bus.emit_async(
            AgentEventType.REVIEW, {"type": "reviewer_response", "content": content}
        )

        payload = extract_json_object(content)
        if payload is None:
            logger.warning("Review response is not JSON, treating as approved")
            return Verdict(approved=True, grade="B", feedback=content)

        verdict = Verdict.from_dict(payload)
        if verdict.requires_more_work:
            verdict.message = f"Fix these issues: {'; '.join(verdict.must_fix)}"
            await self.event_bus.emit_async(
                AgentEventType.THINKING,
                {"message": f"Reviewer found {len(verdict.must_fix)} issues to fix"},
            )

        await self.event_bus.emit_async(AgentEventType.REVIEW, {"verdict": verdict.to_dict()})
        logger.info(f"Review verdict: grade={verdict.grade} must_fix={len(verdict.must_fix)}")
        return verdict

    async def _read_files(self, files: list[str], context: ToolContext) -> dict[str, str]:
        contents: dict[str, str] = {}
        for path in files[: self.max_files]:
            result = await self.registry.execute("read_file", {"file_path": path}, context)
            if result.success and isinstance(result.data, dict) and result.data.get("content"):
                contents[path] = result.data["content"][: self.file_chars]
            else:
                logger.debug(f"Review could not read {path}: {result.error}")
        return contents

    async def _project_info(self, context: ToolContext):
        result = await self.registry.execute("get_project_info", {}, context)
        return result.data if result.success else None
