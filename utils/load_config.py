import os
import tomllib
from pathlib import Path
from dacite import Config as DaciteConfig, from_dict
from utils.config import Config

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.toml"

# env var -> (section, key, cast)
_ENV_OVERRIDES = {
    "LLM_MODEL": ("llm", "model", str),
    "LLM_TEMPERATURE": ("llm", "temperature", float),
    "AGENT_MAX_ITERATIONS": ("agent", "max_iterations", int),
    "SERVER_HOST": ("server", "host", str),
    "SERVER_PORT": ("server", "port", int),
}


def load_config(path: str | Path | None = None) -> Config:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    config_dict: dict = {}
    if config_path.is_file():
        with open(config_path, "rb") as f:
            config_dict = tomllib.load(f)

    for env_var, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_var)
        if raw:
            try:
                config_dict.setdefault(section, {})[key] = cast(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_var}: {raw!r}") from e

    return from_dict(Config, config_dict, config=DaciteConfig(strict=True, cast=[float]))
