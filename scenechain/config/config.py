import os
from typing import Any, Dict, Optional

import toml
from dotenv import dotenv_values
from pydantic import BaseModel, Field

# Resolved relative to the repository root unless overridden.
CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(os.path.dirname(CONFIG_DIR))
DEFAULT_CONFIG_FILE = os.path.join(CONFIG_DIR, "config.toml")


def get_default_config():
    """Get default configuration"""
    return {
        # Segmentation
        "mode": "hybrid",
        "max_segments": 20,
        "max_tokens_per_segment": 200,
        "target_duration": 5.0,
        "min_duration": 1.0,
        "max_duration": 10.0,
        "enable_semantic_expansion": False,
        "expansion_style": "balanced",
        "enable_dialogue_implantation": False,

        # Generation
        "continuity_enabled": True,
        "generation_timeout_sec": 600.0,
        "max_attempts_per_segment": 3,
        "output_dir": os.path.join(PROJECT_ROOT, "outputs"),

        # Billing
        "unlimited_credits": False,
        "pipeline_features": ["continuity"],

        # LLM used by ai/hybrid segmentation, expansion and dialogue
        "llm_provider": "openai",
        "llm_model_id": "gpt-4o-mini",
        "llm_api_key": "",
        "llm_base_url": "",
        "llm_extra_params": "",
        "llm_timeout_sec": 60.0,
        "prompts_file": os.path.join(CONFIG_DIR, "prompts.yaml"),

        # Logging
        "log_file": "logs/scenechain.log",
        "log_level": "INFO",
        "log_console": False,
    }


def get_default_base_url(provider):
    p = (provider or "").lower()
    if p == "openai":
        return "https://api.openai.com/v1"
    if p == "deepseek":
        return "https://api.deepseek.com"
    if p == "dashscope":
        return "https://dashscope.aliyuncs.com/compatible-mode/v1"
    return ""


def _as_bool(value: str) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


# env key -> (config key, converter)
ENV_OVERRIDES = {
    "SCENECHAIN_MODE": ("mode", str),
    "SCENECHAIN_MAX_SEGMENTS": ("max_segments", int),
    "SCENECHAIN_MAX_TOKENS_PER_SEGMENT": ("max_tokens_per_segment", int),
    "SCENECHAIN_TARGET_DURATION": ("target_duration", float),
    "SCENECHAIN_MAX_DURATION": ("max_duration", float),
    "SCENECHAIN_SEMANTIC_EXPANSION": ("enable_semantic_expansion", _as_bool),
    "SCENECHAIN_EXPANSION_STYLE": ("expansion_style", str),
    "SCENECHAIN_DIALOGUE_IMPLANTATION": ("enable_dialogue_implantation", _as_bool),
    "SCENECHAIN_CONTINUITY_ENABLED": ("continuity_enabled", _as_bool),
    "SCENECHAIN_GENERATION_TIMEOUT_SEC": ("generation_timeout_sec", float),
    "SCENECHAIN_MAX_ATTEMPTS": ("max_attempts_per_segment", int),
    "SCENECHAIN_OUTPUT_DIR": ("output_dir", str),
    "SCENECHAIN_UNLIMITED_CREDITS": ("unlimited_credits", _as_bool),
    "SCENECHAIN_LOG_FILE": ("log_file", str),
    "SCENECHAIN_LOG_LEVEL": ("log_level", str),
    "LLM_PROVIDER": ("llm_provider", str),
    "LLM_MODEL_ID": ("llm_model_id", str),
    "LLM_API_KEY": ("llm_api_key", str),
    "LLM_BASE_URL": ("llm_base_url", str),
    "LLM_EXTRA_PARAMS": ("llm_extra_params", str),
    "LLM_TIMEOUT_SEC": ("llm_timeout_sec", float),
}


def _find_env_file() -> Optional[str]:
    candidates = [
        os.path.join(PROJECT_ROOT, "scenechain", ".env"),
        os.path.join(PROJECT_ROOT, ".env"),
    ]
    return next((p for p in candidates if os.path.exists(p)), None)


def apply_env_overrides(config: Dict[str, Any], env_vars: Dict[str, Optional[str]]) -> Dict[str, Any]:
    for env_key, (config_key, convert) in ENV_OVERRIDES.items():
        raw = env_vars.get(env_key)
        if raw is None or str(raw).strip() == "":
            continue
        try:
            config[config_key] = convert(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid value for {env_key}: {raw!r} ({exc})") from exc

    if "SCENECHAIN_FEATURES" in env_vars and env_vars["SCENECHAIN_FEATURES"] is not None:
        config["pipeline_features"] = [
            f.strip() for f in env_vars["SCENECHAIN_FEATURES"].split(",") if f.strip()
        ]

    if not config.get("llm_base_url"):
        config["llm_base_url"] = get_default_base_url(config.get("llm_provider"))
    return config


def load_config(config_file: Optional[str] = None, env_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a TOML file, then overlay .env and process environment values.

    Args:
        config_file: TOML file path. Defaults to scenechain/config/config.toml when present.
        env_file: .env file path. Defaults to scenechain/.env or the repository .env.

    Returns:
        A flat configuration dict with every default key present.
    """
    config = get_default_config()

    path = config_file or os.environ.get("SCENECHAIN_CONFIG_FILE") or DEFAULT_CONFIG_FILE
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            file_config = toml.load(f)
        for key, value in file_config.items():
            config[key] = value
    elif config_file:
        raise FileNotFoundError(f"Config file not found: {config_file}")

    env_vars: Dict[str, Optional[str]] = {}
    env_path = env_file or _find_env_file()
    if env_path and os.path.exists(env_path):
        env_vars.update(dotenv_values(env_path))
    # Process environment wins over the .env file.
    env_vars.update({k: v for k, v in os.environ.items() if k in ENV_OVERRIDES or k == "SCENECHAIN_FEATURES"})

    return apply_env_overrides(config, env_vars)


class PipelineConfig(BaseModel):
    mode: str = "hybrid"
    enable_semantic_expansion: bool = False
    expansion_style: str = "balanced"
    max_segments: int = Field(default=20, ge=1)
    target_duration: float = Field(default=5.0, gt=0)
    enable_dialogue_implantation: bool = False
    continuity_enabled: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PipelineConfig":
        return cls(**{k: config[k] for k in cls.model_fields if k in config})
