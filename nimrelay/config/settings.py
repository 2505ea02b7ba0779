"""Runtime settings."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="NIMRELAY_", extra="ignore")

    app_name: str = "NIM Relay"
    service_name: str = "OpenAI to NVIDIA NIM Proxy"
    log_level: str = "info"
    # 空串表示只输出到 stderr
    log_file: str = "logs/nimrelay.log"
    host: str = "0.0.0.0"
    port: int = Field(default=3000, validation_alias=AliasChoices("NIMRELAY_PORT", "PORT"))

    upstream_base_url: str = Field(
        default="https://integrate.api.nvidia.com/v1",
        validation_alias=AliasChoices("NIMRELAY_UPSTREAM_BASE_URL", "NIM_API_BASE"),
    )
    upstream_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("NIMRELAY_UPSTREAM_API_KEY", "NIM_API_KEY"),
    )
    upstream_timeout_seconds: float = 300.0
    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20
    probe_timeout_seconds: float = 15.0

    # 在输出中以 <think> 标签展示 reasoning
    show_reasoning: bool = False
    # 向上游追加 chat_template_kwargs.thinking
    enable_thinking_mode: bool = False
    # 流中途上游失败时，关闭前是否补发一条 SSE error 事件
    stream_error_event: bool = False

    max_request_body_bytes: int = 100 * 1024 * 1024
    cors_allow_origins: str = "*"

    # JSON 对象，整体替换内置模型映射表
    model_mapping_json: str = ""
    fallback_large_model: str = "meta/llama-3.1-405b-instruct"
    fallback_medium_model: str = "meta/llama-3.1-70b-instruct"
    fallback_small_model: str = "meta/llama-3.1-8b-instruct"
    # 非空时从该文件读取 system 策略提示词
    policy_prompt_path: str = ""


settings = Settings()
