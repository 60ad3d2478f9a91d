from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel


class EngineConfig(BaseModel):
    """Behavioural switches for the transition engine."""

    allow_concurrent_instances: bool = True
    approve_action: str = "approve"
    reject_action: str = "reject"


class ApprovalflowConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    database_url: Optional[str] = None
    definitions_path: Optional[str] = None


def load_config(path: Optional[str] = None) -> ApprovalflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to APPROVALFLOW_CONFIG
            env variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("APPROVALFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ApprovalflowConfig(**data)
    else:
        config = ApprovalflowConfig()

    env_db_url = os.getenv("APPROVALFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
