"""Application configuration via environment variables."""

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

from babeldesk.jobs.command import ToolOptions


class Settings(BaseSettings):
    # Runtime storage
    runtime_dir: str = os.path.join(str(Path.home()), ".babeldesk")
    history_path: Optional[str] = None  # defaults to <runtime_dir>/history.json
    history_limit: int = 500
    log_capacity: int = 500

    # Translation service passed through to the external tool
    openai_base_url: str = "https://api.openai.com/v1"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    # External tool flags
    bilingual: bool = False
    debug: bool = False
    extra_flags: str = ""
    tool_executable: Optional[str] = None  # skips environment detection when set

    # Process supervision
    job_timeout_seconds: float = 0  # 0 disables the timeout
    kill_grace_seconds: float = 5

    # Where the save dialog starts
    document_root: str = os.path.join(str(Path.home()), "Documents", "BabelDOC")

    # Local API
    api_host: str = "127.0.0.1"
    api_port: int = 8765
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def resolved_history_path(self) -> str:
        return self.history_path or os.path.join(self.runtime_dir, "history.json")

    def tool_options(self) -> ToolOptions:
        """Snapshot of the flags handed to the external tool for one run."""
        return ToolOptions(
            base_args=[
                "--openai",
                "--openai-model",
                self.openai_model,
                "--openai-base-url",
                self.openai_base_url,
                "--openai-api-key",
                self.openai_api_key,
            ],
            secret_values=[self.openai_api_key] if self.openai_api_key else [],
            bilingual=self.bilingual,
            debug=self.debug,
            extra_flags=self.extra_flags,
        )


settings = Settings()
