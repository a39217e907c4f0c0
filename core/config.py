"""
配置文件 - 项目配置管理
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from pydantic import model_validator


class JwtSettings(BaseModel):
    # 签名密钥，所有环境均必须显式配置
    secret_key: Optional[str] = None
    algorithm: str = "HS256"
    issuer: str = "chat-gateway"
    audience: str = "chat-clients"
    access_token_expire_minutes: int = 60
    # Clock skew tolerated when checking exp/nbf
    leeway_seconds: int = 0


class BackendTlsSettings(BaseModel):
    enabled: bool = False
    ca: Optional[str] = None
    cert: Optional[str] = None
    key: Optional[str] = None


class BackendSettings(BaseModel):
    # host:port of the chat backend gRPC server (system of record)
    target: str = "localhost:6565"
    timeout_s: float = 5.0
    # 只读调用在 UNAVAILABLE 时的额外重试次数，写操作从不重试
    read_retry_attempts: int = 2
    max_message_length: int = 4 * 1024 * 1024
    tls: BackendTlsSettings = Field(default_factory=BackendTlsSettings)


class RealtimeSettings(BaseModel):
    hub_path: str = "/chathub"
    token_query_param: str = "access_token"
    send_queue_max: int = 100
    # 队列溢出策略: drop_oldest | drop_new | disconnect
    send_overflow_policy: str = "drop_oldest"
    idle_ping_interval_s: float = 30.0
    pong_grace_s: float = 10.0
    missed_ping_limit: int = 2
    # auto | inmemory | redis
    broker: str = "auto"


class RedisSettings(BaseModel):
    url: Optional[str] = None
    channel_prefix: str = "chat-gateway"
    # pubsub 断线后的重连退避（秒）
    reconnect_initial_s: float = 0.5
    reconnect_max_s: float = 10.0


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="Chat Gateway")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=True)
    ENVIRONMENT: str = Field(default="development")

    # 分组配置：嵌套模型，环境变量形如 JWT__SECRET_KEY / BACKEND__TARGET
    jwt: JwtSettings = Field(default_factory=JwtSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)

    # CORS配置
    CORS_ORIGINS: list = Field(
        default=["http://localhost:3000", "http://localhost:5000"],
    )

    # 日志/请求体记录配置
    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = Field(default=True)
    LOG_REQUEST_BODY_MAX_BYTES: int = Field(default=2048)

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @model_validator(mode="after")
    def _validate_secret_key(self):
        # 令牌校验配置在启动时一次性加载，缺少密钥直接拒绝启动
        if not self.jwt.secret_key:
            raise ValueError(
                "JWT__SECRET_KEY 未配置。请在环境变量或 .env 中设置 JWT__SECRET_KEY"
            )
        return self

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except ValueError:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v


settings = Settings()
