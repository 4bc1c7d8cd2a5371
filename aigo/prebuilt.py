import os
from typing import Optional

from aigo.chat_agent import ChatAgent
from aigo.llm.litellm import LiteLLM
from aigo.tools.calculator import CalculatorTool
from aigo.tools.registry import ToolRegistry
from utils.config import Config
from utils.load_config import load_config

OPENROUTER_DEFAULT_MODEL = "openai/gpt-4o-mini"
OPENAI_DEFAULT_MODEL = "gpt-4o-mini"


def resolve_model(model: Optional[str] = None) -> str:
    """
    Pick the model string handed to LiteLLM.

    An explicit model (config or LLM_MODEL) wins. Otherwise OpenRouter is
    preferred when OPENROUTER_API_KEY is set, falling back to OpenAI.
    OpenRouter models without a provider route are prefixed with
    ``openrouter/`` so LiteLLM sends them through OpenRouter.
    """
    model = model or os.getenv("LLM_MODEL")
    if os.getenv("OPENROUTER_API_KEY"):
        model = model or os.getenv("OPENROUTER_MODEL") or OPENROUTER_DEFAULT_MODEL
        if not model.startswith("openrouter/"):
            model = f"openrouter/{model}"
        return model
    return model or os.getenv("OPENAI_MODEL") or OPENAI_DEFAULT_MODEL


def _validate_litellm_environment(model: str) -> None:
    """
    Validate environment variables for LiteLLM based on the model being used.

    Args:
        model: The model string which may indicate the provider

    Raises:
        ValueError: If required environment variables are missing
    """
    # Not exhaustive; covers the most common providers
    provider_env_vars = {
        "openrouter": ["OPENROUTER_API_KEY"],
        "gpt": ["OPENAI_API_KEY"],
        "claude": ["ANTHROPIC_API_KEY"],
        "gemini": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
        "mistral": ["MISTRAL_API_KEY"],
        "azure": ["AZURE_API_KEY", "AZURE_API_BASE"],
        "bedrock": ["AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"],
    }

    model_lower = model.lower()
    required_vars = []
    for provider_prefix, env_vars in provider_env_vars.items():
        if provider_prefix in model_lower:
            required_vars = env_vars
            break

    if not required_vars:
        common_vars = ["OPENROUTER_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY"]
        if any(os.getenv(var) for var in common_vars):
            return
        raise ValueError(
            f"No API key found for model '{model}'. "
            f"Please set one of the following environment variables: "
            f"{', '.join(common_vars)}, or other provider-specific API keys. "
            f"See https://docs.litellm.ai/docs/providers for full list of supported providers."
        )

    missing_vars = [var for var in required_vars if not os.getenv(var)]
    if missing_vars == required_vars:
        raise ValueError(
            f"Missing required environment variables for model '{model}'. "
            f"Please set one of: {', '.join(required_vars)}"
        )


def build_default_tools() -> ToolRegistry:
    return ToolRegistry([CalculatorTool()])


def build_default_agent(config: Optional[Config] = None) -> ChatAgent:
    """LiteLLM-backed chat agent with the built-in tools and the configured loop limits."""
    config = config or load_config()
    model = resolve_model(config.llm.model)
    _validate_litellm_environment(model)

    llm = LiteLLM(model=model, temperature=config.llm.temperature, max_tokens=config.llm.max_tokens)
    return ChatAgent(
        llm=llm,
        tools=build_default_tools(),
        max_iterations=config.agent.max_iterations,
        system_prompt=config.agent.system_prompt,
    )
