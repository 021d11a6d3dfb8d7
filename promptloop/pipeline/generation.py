"""
Two-stage generation pipeline.

Stage "primary" runs the compiled job prompt, optionally with web search.
Stage "post" (only when the post-processing template is enabled and not
blank) rewrites the primary output; it never uses the search tool. The
delivered text comes from the last stage, while citations and the
search flag always come from the primary stage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from openai import AsyncOpenAI

from promptloop.core.logging import get_logger
from promptloop.pipeline.prompt_compile import (
    PostPromptConfig,
    build_post_prompt_variables,
    compile_prompt_template,
)
from promptloop.schemas.common import Citation
from promptloop.services import llm
from promptloop.services.llm import GenerationOptions, GenerationResult

logger = get_logger(__name__)

StageName = Literal["primary", "post"]


@dataclass(frozen=True)
class StageResult:
    """Output of one pipeline stage, tagged with the stage it came from."""

    stage: StageName
    prompt: str
    result: GenerationResult


@dataclass
class PipelineResult:
    """Merged outcome of all stages."""

    output: str
    model: str
    used_tool: bool
    citations: list[Citation]
    stages: list[StageResult] = field(default_factory=list)
    post_prompt_warning: str | None = None

    @property
    def post_prompt_applied(self) -> bool:
        return any(s.stage == "post" for s in self.stages)

    @property
    def primary(self) -> StageResult:
        return self.stages[0]

    def _per_stage(self, attr: str) -> Any:
        if not self.post_prompt_applied:
            return getattr(self.primary.result, attr)
        return {s.stage: getattr(s.result, attr) for s in self.stages}

    @property
    def usage(self) -> Any:
        """Primary usage, or `{"primary": ..., "post": ...}` when the post pass ran."""
        return self._per_stage("usage")

    @property
    def tool_calls(self) -> Any:
        return self._per_stage("tool_calls")


def merge_stages(stages: list[StageResult], warning: str | None = None) -> PipelineResult:
    primary = stages[0].result
    final = stages[-1].result
    return PipelineResult(
        output=final.text,
        model=primary.model,
        used_tool=primary.used_tool,
        citations=primary.citations,
        stages=stages,
        post_prompt_warning=warning,
    )


async def run_generation_pipeline(
    prompt: str,
    options: GenerationOptions,
    variables: dict[str, str],
    post_prompt: PostPromptConfig,
    now: datetime | None = None,
    client: AsyncOpenAI | None = None,
) -> PipelineResult:
    """
    Run the primary stage and, if configured, the post-processing stage.

    Args:
        prompt: Compiled primary prompt
        options: Generation options for the primary stage
        variables: Base template variables (used to compile the post prompt)
        post_prompt: Normalized post-processing config
        now: Instant used for built-in template variables
        client: Optional OpenAI-compatible client

    Returns:
        PipelineResult with per-stage metadata
    """
    stages = [
        StageResult(
            stage="primary",
            prompt=prompt,
            result=await llm.generate_with_retry(prompt, options, client=client),
        )
    ]

    if post_prompt.enabled:
        primary = stages[0].result
        post_vars = build_post_prompt_variables(
            variables,
            output=primary.text,
            citations=primary.citations,
            used_web_search=primary.used_tool,
            llm_model=primary.model,
        )
        post_text = compile_prompt_template(post_prompt.template, post_vars, now=now)
        post_options = GenerationOptions(model=options.model, use_tool=False)
        stages.append(
            StageResult(
                stage="post",
                prompt=post_text,
                result=await llm.generate_with_retry(post_text, post_options, client=client),
            )
        )
        logger.bind(model=options.model).debug("post_prompt_applied")

    return merge_stages(stages, post_prompt.warning)
