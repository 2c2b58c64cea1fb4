"""Configuration settings for CronKeeper."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///data/cronkeeper.db"
    database_echo: bool = False

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False

    # Scheduler
    scheduler_timezone: str = "UTC"
    tick_interval: int = 60  # seconds between scheduling ticks
    max_workers: int = 4  # concurrent executions per scheduler instance
    server_id: str = ""  # empty means hostname:pid
    scheduler_job_defaults: dict = {
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 30
    }

    # Locks
    lock_backend: str = "database"  # 'database' or 'memory'
    lock_ttl: int = 3600  # seconds before an abandoned lock expires

    # Executor settings
    execution_timeout: int = 300  # default max runtime in seconds, 0 disables
    max_output_size: int = 65536  # bytes of captured output kept per result
    http_timeout: int = 30

    # Retention
    retention_interval: int = 60  # minutes between cleanup sweeps
    keep_results_on_delete: bool = False

    # Maintenance mode flag file
    maintenance_file: str = "data/maintenance"

    # Security
    allow_host_commands: bool = True
    allowed_commands: list = []  # Empty means all executables allowed

    # Command catalog
    # {"backup": "/usr/local/bin/backup --quiet"}
    commands: dict = {}
    # {"ping-api": {"url": "https://example.com/ping", "method": "POST"}}
    http_commands: dict = {}

    # Logging
    log_level: str = "INFO"
    log_file: str = "data/cronkeeper.log"

    class Config:
        env_prefix = "CRONKEEPER_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
