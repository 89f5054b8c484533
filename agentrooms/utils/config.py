"""Configuration management for agent chat rooms."""

import os
import yaml
from dataclasses import dataclass, field
from typing import Any, Dict, List

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()


@dataclass
class CompletionConfig:
    """Streaming completion backend configuration."""
    provider: str = "ollama"
    model_id: str = "deepseek-r1"
    host: str = "http://localhost:11434"
    region: str = "us-east-1"
    timeout: int = 3600
    max_tokens: int = 4096
    temperature: float = 0.0


@dataclass
class OrchestrationConfig:
    """Turn loop configuration."""
    max_iterations: int = 99
    reasoning_start: str = "<think>"
    reasoning_end: str = "</think>"


@dataclass
class RoomsConfig:
    """Location of the YAML room definitions."""
    directory: str = "rooms"


@dataclass
class ServerConfig:
    """WebSocket server configuration."""
    allowed_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str = ""


@dataclass
class Config:
    """Main configuration class."""
    completion: CompletionConfig = field(default_factory=CompletionConfig)
    orchestration: OrchestrationConfig = field(default_factory=OrchestrationConfig)
    rooms: RoomsConfig = field(default_factory=RoomsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: str = "config.yaml") -> "Config":
        """
        Load configuration from file and environment variables.

        Environment variables override config file values:
        - COMPLETION_PROVIDER
        - OLLAMA_ENDPOINT / OLLAMA_MODEL
        - BEDROCK_MODEL_ID / AWS_REGION
        - MAX_ITERATIONS
        - ROOMS_DIR
        - LOG_LEVEL

        A missing configuration file yields the defaults.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Config instance with loaded settings

        Raises:
            ConfigurationError: If the file is not valid YAML or has the wrong shape
        """
        config_data: Dict[str, Any] = {}
        if os.path.exists(config_path):
            try:
                with open(config_path, 'r', encoding="utf-8") as f:
                    config_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError.invalid(config_path, str(e)) from e
            if not isinstance(config_data, dict):
                raise ConfigurationError.invalid(config_path, "top level must be a mapping")

        completion_data = config_data.get("completion", {}) or {}
        orchestration_data = config_data.get("orchestration", {}) or {}
        rooms_data = config_data.get("rooms", {}) or {}
        server_data = config_data.get("server", {}) or {}
        logging_data = config_data.get("logging", {}) or {}

        defaults = CompletionConfig()
        provider = os.getenv("COMPLETION_PROVIDER", completion_data.get("provider", defaults.provider))
        if provider == "bedrock":
            model_id = os.getenv("BEDROCK_MODEL_ID", completion_data.get("model_id", "amazon.nova-pro-v1:0"))
        else:
            model_id = os.getenv("OLLAMA_MODEL", completion_data.get("model_id", defaults.model_id))

        completion_config = CompletionConfig(
            provider=provider,
            model_id=model_id,
            host=os.getenv("OLLAMA_ENDPOINT", completion_data.get("host", defaults.host)),
            region=os.getenv("AWS_REGION", completion_data.get("region", defaults.region)),
            timeout=int(completion_data.get("timeout", defaults.timeout)),
            max_tokens=int(completion_data.get("max_tokens", defaults.max_tokens)),
            temperature=float(completion_data.get("temperature", defaults.temperature)),
        )

        orchestration_defaults = OrchestrationConfig()
        orchestration_config = OrchestrationConfig(
            max_iterations=int(os.getenv(
                "MAX_ITERATIONS",
                orchestration_data.get("max_iterations", orchestration_defaults.max_iterations)
            )),
            reasoning_start=orchestration_data.get("reasoning_start", orchestration_defaults.reasoning_start),
            reasoning_end=orchestration_data.get("reasoning_end", orchestration_defaults.reasoning_end),
        )
        if orchestration_config.max_iterations < 1:
            raise ConfigurationError.invalid(config_path, "orchestration.max_iterations must be at least 1")

        rooms_config = RoomsConfig(
            directory=os.getenv("ROOMS_DIR", rooms_data.get("directory", RoomsConfig().directory))
        )

        server_config = ServerConfig(
            allowed_origins=list(server_data.get("allowed_origins", ServerConfig().allowed_origins))
        )

        logging_defaults = LoggingConfig()
        logging_config = LoggingConfig(
            level=os.getenv("LOG_LEVEL", logging_data.get("level", logging_defaults.level)),
            format=logging_data.get("format", logging_defaults.format),
            file=logging_data.get("file", logging_defaults.file) or "",
        )

        return cls(
            completion=completion_config,
            orchestration=orchestration_config,
            rooms=rooms_config,
            server=server_config,
            logging=logging_config,
        )
