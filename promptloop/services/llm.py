"""
Generation client.

`generate()` makes one call to the text-generation service and normalizes the
result. Two tool modes are supported when web search is requested:
- native: the Responses API with the `web_search_preview` tool
- plugin: Chat Completions with the gateway `web` plugin (OpenRouter style
  gateways reached through LLM_BASE_URL)

Blank output and a search request that produced no citations are hard
failures. Transport and service failures become `UpstreamError` carrying a
status code, which `generate_with_retry()` retries when it is 408, 429 or 5xx.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from promptloop.config import get_config, get_settings
from promptloop.core.logging import get_logger
from promptloop.core.retry import RetryPolicy, retry_with_backoff
from promptloop.pipeline.prompt_compile import SERVICE_SYSTEM_PROMPT
from promptloop.schemas.common import Citation

logger = get_logger(__name__)

ToolMode = Literal["native", "plugin"]


class GenerationError(Exception):
    """Base class for generation failures."""

    status_code: int | None = None


class EmptyOutputError(GenerationError):
    """The service returned blank text."""

    def __init__(self) -> None:
        super().__init__("LLM returned empty output")


class ToolRequiredButUnusedError(GenerationError):
    """Web search was requested but the answer carries no citations."""

    def __init__(self) -> None:
        super().__init__("Web search was requested but the response has no citations")


class UpstreamError(GenerationError):
    """Transport or service failure talking to the generation service."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class GenerationOptions:
    model: str
    use_tool: bool = False
    tool_mode: ToolMode = "native"


@dataclass
class GenerationResult:
    """Normalized output of one generation call."""

    text: str
    used_tool: bool
    model: str
    citations: list[Citation] = field(default_factory=list)
    usage: dict[str, Any] | None = None
    tool_calls: list[dict[str, Any]] | None = None


def normalize_model(model: str | None) -> str:
    model = (model or "").strip()
    return model or get_config().llm.default_model


def normalize_tool_mode(mode: str | None) -> ToolMode:
    if mode in ("native", "plugin"):
        return mode
    default = get_config().llm.default_web_search_mode
    return "plugin" if default == "plugin" else "native"


def get_client() -> AsyncOpenAI:
    """Build a client for the configured service. Retries are ours, not the SDK's."""
    settings = get_settings()
    if not settings.openai_api_key:
        raise UpstreamError("OPENAI_API_KEY is required")
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.llm_base_url or None,
        max_retries=0,
    )


def timeout_for(options: GenerationOptions) -> float:
    llm = get_config().llm
    return llm.search_timeout_seconds if options.use_tool else llm.timeout_seconds


def _dedupe(citations: list[Citation]) -> list[Citation]:
    seen: set[str] = set()
    unique = []
    for c in citations:
        if c.url and c.url not in seen:
            seen.add(c.url)
            unique.append(c)
    return unique


def _dump(obj: Any) -> dict[str, Any] | None:
    if obj is None:
        return None
    if hasattr(obj, "model_dump"):
        return obj.model_dump(exclude_none=True)
    return dict(obj)


async def _generate_native(
    client: AsyncOpenAI, prompt: str, options: GenerationOptions
) -> GenerationResult:
    kwargs: dict[str, Any] = {}
    if options.use_tool:
        kwargs["tools"] = [{"type": "web_search_preview"}]

    response = await client.responses.create(
        model=options.model,
        instructions=SERVICE_SYSTEM_PROMPT,
        input=prompt,
        timeout=timeout_for(options),
        **kwargs,
    )

    citations: list[Citation] = []
    tool_calls: list[dict[str, Any]] = []
    for item in response.output or []:
        if item.type == "web_search_call":
            tool_calls.append({"type": item.type, "id": item.id, "status": item.status})
        elif item.type == "message":
            for part in item.content or []:
                for annotation in getattr(part, "annotations", None) or []:
                    if annotation.type == "url_citation":
                        citations.append(Citation(url=annotation.url, title=annotation.title))

    return GenerationResult(
        text=(response.output_text or "").strip(),
        used_tool=bool(tool_calls),
        model=response.model or options.model,
        citations=_dedupe(citations),
        usage=_dump(response.usage),
        tool_calls=tool_calls or None,
    )


async def _generate_plugin(
    client: AsyncOpenAI, prompt: str, options: GenerationOptions
) -> GenerationResult:
    extra_body = {"plugins": [{"id": "web"}]} if options.use_tool else None

    response = await client.chat.completions.create(
        model=options.model,
        messages=[
            {"role": "system", "content": SERVICE_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        timeout=timeout_for(options),
        extra_body=extra_body,
    )

    message = response.choices[0].message if response.choices else None
    citations: list[Citation] = []
    for annotation in (getattr(message, "annotations", None) or []) if message else []:
        if annotation.type == "url_citation" and annotation.url_citation:
            citations.append(
                Citation(url=annotation.url_citation.url, title=annotation.url_citation.title)
            )

    tool_calls = [{"type": "plugin", "id": "web"}] if options.use_tool else None
    return GenerationResult(
        text=((message.content if message else None) or "").strip(),
        used_tool=options.use_tool,
        model=response.model or options.model,
        citations=_dedupe(citations),
        usage=_dump(response.usage),
        tool_calls=tool_calls,
    )


async def generate(
    prompt: str,
    options: GenerationOptions,
    client: AsyncOpenAI | None = None,
) -> GenerationResult:
    """
    Run a single generation call.

    Args:
        prompt: Compiled user prompt
        options: Model and tool settings
        client: OpenAI-compatible client, built from settings if omitted

    Returns:
        GenerationResult with stripped, non-empty text

    Raises:
        UpstreamError: transport or service failure (timeouts map to 408,
            connection failures to 503)
        EmptyOutputError: blank output
        ToolRequiredButUnusedError: search requested but nothing was cited
    """
    client = client or get_client()

    try:
        if options.use_tool and options.tool_mode == "plugin":
            result = await _generate_plugin(client, prompt, options)
        else:
            result = await _generate_native(client, prompt, options)
    except APITimeoutError as e:
        raise UpstreamError("LLM request timed out", status_code=408) from e
    except APIConnectionError as e:
        raise UpstreamError(f"LLM connection failed: {e}", status_code=503) from e
    except APIStatusError as e:
        raise UpstreamError(f"LLM request failed: {e.message}", status_code=e.status_code) from e

    if not result.text:
        raise EmptyOutputError()
    if options.use_tool and not result.citations:
        raise ToolRequiredButUnusedError()

    logger.bind(
        model=result.model,
        used_tool=result.used_tool,
        citations=len(result.citations),
        total_tokens=(result.usage or {}).get("total_tokens"),
    ).info("llm_generated")
    return result


async def generate_with_retry(
    prompt: str,
    options: GenerationOptions,
    client: AsyncOpenAI | None = None,
) -> GenerationResult:
    """`generate()` wrapped in the shared retry policy (llm.max_attempts calls at most)."""
    policy = RetryPolicy(max_attempts=get_config().llm.max_attempts)
    return await retry_with_backoff(
        lambda: generate(prompt, options, client=client),
        policy=policy,
        operation_name="llm_generate",
    )
