from promptloop.pipeline.prompt_compile import (
    PostPromptConfig,
    compile_prompt_template,
    normalize_post_prompt_config,
)

__all__ = [
    "PostPromptConfig",
    "compile_prompt_template",
    "normalize_post_prompt_config",
]
