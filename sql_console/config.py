"""Configuration management for the SQL console client."""

from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings


class ConsoleConfig(BaseSettings):
    """Configuration for the SQL console client."""
    
    # Remote service
    api_url: str = Field(default="http://localhost:8080", description="Base URL of the data service")
    request_timeout: Optional[float] = Field(
        default=None, gt=0, description="Per-request timeout in seconds (unset waits indefinitely)"
    )
    
    # Upload
    upload_chunk_size: int = Field(
        default=64 * 1024, ge=1024, le=16 * 1024 * 1024, description="Bytes per streamed upload chunk"
    )
    
    # Queries
    table_name: str = Field(default="tablename", description="Table the service loads uploads into")
    default_query: str = Field(default="SELECT * FROM tablename LIMIT 10", description="Initial editor text")
    
    # Assistant
    auto_execute: bool = Field(default=True, description="Ask the assistant to run generated SQL")
    preview_rows: int = Field(default=5, ge=1, le=50, description="Inline rows shown for assistant previews")
    
    log_level: str = Field(default="WARNING", description="Logging level when not verbose")
    
    class Config:
        env_prefix = "SQL_CONSOLE_"
        env_file = ".env"
        case_sensitive = False
        
    @validator("api_url")
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so paths can be appended."""
        return v.rstrip("/")
    
    @validator("log_level")
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


def load_config(**overrides) -> ConsoleConfig:
    """Load configuration from environment variables and .env file."""
    return ConsoleConfig(**overrides)
