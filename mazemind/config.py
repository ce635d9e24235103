"""
Configuration

One pydantic section per component, aggregated in MazeMindConfig and loaded
from YAML. Every component also takes the same values as plain keyword
arguments, so the config layer is optional.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from loguru import logger
from pydantic import BaseModel, Field

TAG = __name__


class MemorySettings(BaseModel):
    max_memories: int = Field(10000, ge=1)
    memory_file: Optional[str] = None
    autosave: bool = False
    use_llm_for_importance: bool = False


class RetrievalSettings(BaseModel):
    alpha: float = 0.3
    beta: float = 0.3
    gamma: float = 0.4
    decay_factor: float = Field(0.995, gt=0, lt=1)
    default_k: int = 10
    noise_threshold: float = 0.8
    noise_scale: float = 0.3


class ReflectionSettings(BaseModel):
    enabled: bool = True
    threshold: int = 150
    enable_time_fallback: bool = True
    time_fallback_interval: float = 180
    min_memories_for_reflection: int = 20
    importance_threshold: int = 5
    max_memories_per_reflection: int = 30
    max_memories_per_question: int = 20
    questions_per_reflection: int = 3
    enable_meta_reflections: bool = True
    min_reflections_for_meta: int = 5
    min_meta_for_higher_order: int = 3
    max_reflection_depth: int = 3
    use_llm_categorization: bool = True


class PlanningSettings(BaseModel):
    hourly_plan_count: int = 3
    action_duration: float = 300
    planning_temperature: float = 0.7
    planning_max_tokens: int = 300
    critical_hunger_threshold: float = 20
    critical_thirst_threshold: float = 15
    critical_energy_threshold: float = 10
    low_resource_threshold: float = 30
    nearby_item_radius: int = 5
    nearby_item_count: int = 3
    consume_item_radius: int = 2
    divergence_threshold: float = 1.5
    stuck_multiplier: float = 3
    # seconds before the same re-plan reason may fire again
    replan_cooldown: float = 60


class DecisionSettings(BaseModel):
    decision_interval: float = 3.0
    override_item_radius: int = 10


class LLMSettings(BaseModel):
    enabled: bool = True
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    timeout: float = 30.0


class EmbeddingSettings(BaseModel):
    provider: str = "hash"
    model: str = "text-embedding-3-small"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    dimension: int = 256
    timeout: float = 30.0
    cache_size: int = 1000


class MazeMindConfig(BaseModel):
    agent_name: str = "Arth"
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    memory: MemorySettings = Field(default_factory=MemorySettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    reflection: ReflectionSettings = Field(default_factory=ReflectionSettings)
    planning: PlanningSettings = Field(default_factory=PlanningSettings)
    decision: DecisionSettings = Field(default_factory=DecisionSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)


def load_config(path: Optional[Union[str, Path]] = None) -> MazeMindConfig:
    """
    Load configuration from a YAML file

    A missing or empty file gives the defaults. OPENAI_API_KEY, when set,
    overrides the configured language model key.

    Args:
        path: YAML file path (optional)

    Returns:
        validated configuration
    """
    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
            logger.bind(tag=TAG).info(f"Loaded config from {config_path}")
        else:
            logger.bind(tag=TAG).warning(f"Config file {config_path} not found, using defaults")

    config = MazeMindConfig.model_validate(data)

    env_key = os.getenv("OPENAI_API_KEY")
    if env_key:
        config.llm.api_key = env_key

    return config
