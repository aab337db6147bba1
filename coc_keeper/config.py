"""Engine configuration.

`KeeperConfig` is built once and injected into every component that needs
it. `load_config()` is the only place that reads the environment; nothing in
the turn path looks at `os.environ` directly.

Environment variables (all optional, `.env` is loaded first):

    KEEPER_PROVIDER_URL     base URL of the reasoning backend
    KEEPER_API_KEY          bearer token, empty if not required
    KEEPER_PROVIDER_FORMAT  "koboldcpp" | "openai"
    KEEPER_MODEL            model id (openai format only)
    KEEPER_TIMEOUT          HTTP timeout in seconds
    KEEPER_MAX_ATTEMPTS     attempts per collaborator call
    KEEPER_DATA_DIR         where session JSON files are written
    KEEPER_SCENARIO_FILE    JSON list of scenario snapshots to load
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_TIME_COSTS: dict[str, int] = {"instant": 0, "short": 10, "scene": 60}

KNOWN_AGENTS: tuple[str, ...] = ("memory", "action", "character")


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0
    jitter: bool = True


class KeeperConfig(BaseModel):
    """Everything the engine needs to know, passed in at construction."""

    provider_url: str = "http://localhost:5001"
    api_key: str = ""
    provider_format: Literal["koboldcpp", "openai"] = "koboldcpp"
    model: str = ""
    timeout: float = 120.0

    retry: RetrySettings = Field(default_factory=RetrySettings)

    time_costs: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_TIME_COSTS))
    default_short_action_cap: int = 3
    visited_scenario_limit: int = 3
    action_result_limit: int = 10
    known_agents: tuple[str, ...] = KNOWN_AGENTS

    data_dir: Path = Path("data")
    scenario_file: Path | None = None

    def minutes_for(self, consumption: str) -> int:
        return self.time_costs.get(consumption, 0)


def load_config(env_file: Path | None = None) -> KeeperConfig:
    """Build a KeeperConfig from `.env` + environment, falling back to defaults."""
    load_dotenv(env_file)

    fields: dict = {}
    if url := os.getenv("KEEPER_PROVIDER_URL"):
        fields["provider_url"] = url
    if key := os.getenv("KEEPER_API_KEY"):
        fields["api_key"] = key
    if fmt := os.getenv("KEEPER_PROVIDER_FORMAT"):
        fields["provider_format"] = fmt
    if model := os.getenv("KEEPER_MODEL"):
        fields["model"] = model
    if timeout := os.getenv("KEEPER_TIMEOUT"):
        fields["timeout"] = float(timeout)
    if data_dir := os.getenv("KEEPER_DATA_DIR"):
        fields["data_dir"] = Path(data_dir)
    if scenario_file := os.getenv("KEEPER_SCENARIO_FILE"):
        fields["scenario_file"] = Path(scenario_file)
    if attempts := os.getenv("KEEPER_MAX_ATTEMPTS"):
        fields["retry"] = RetrySettings(max_attempts=int(attempts))

    return KeeperConfig(**fields)
