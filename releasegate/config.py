"""Configuration management for releasegate."""

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PipelineModeSetting = Literal['warn_only', 'strict', 'fail_fast']


class Settings(BaseSettings):
    """releasegate configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Gate policy
    pipeline_mode: PipelineModeSetting = Field(
        default="strict",
        description="Gate policy: warn_only, strict, fail_fast"
    )

    # AWS Configuration
    aws_profile: Optional[str] = Field(default=None, description="AWS profile name")
    aws_region: str = Field(default="us-east-1", description="AWS region")

    # Deployment target
    cluster_name: Optional[str] = Field(default=None, description="ECS cluster name or ARN")
    service_name: Optional[str] = Field(default=None, description="ECS service name")
    task_family: Optional[str] = Field(default=None, description="ECS task definition family")
    container_name: Optional[str] = Field(
        default=None,
        description="Container whose image is replaced (first container when unset)"
    )
    desired_count: int = Field(default=1, ge=0, description="Expected running task count")
    image_repository: Optional[str] = Field(
        default=None,
        description="Container registry repository URI (e.g. ECR)"
    )
    health_check_url: Optional[str] = Field(
        default=None,
        description="HTTP endpoint probed after rollout (e.g. http://alb/health)"
    )

    # Build metadata (Jenkins variables are accepted as-is)
    build_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("build_id", "BUILD_NUMBER"),
        description="CI build identifier"
    )
    commit_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("commit_ref", "GIT_COMMIT"),
        description="Source commit reference"
    )
    build_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("build_url", "BUILD_URL"),
        description="Link to the CI build"
    )

    # Notifications
    slack_bot_token: Optional[str] = Field(default=None, description="Slack bot token")
    slack_api_url: str = Field(
        default="https://slack.com/api/chat.postMessage",
        description="Slack chat.postMessage endpoint"
    )
    app_channel: Optional[str] = Field(default=None, description="Application team channel")
    ops_channel: Optional[str] = Field(default=None, description="Operations channel")
    notification_timeout: int = Field(default=10, description="Notification call timeout in seconds")

    # SonarQube
    sonar_host_url: Optional[str] = Field(default=None, description="SonarQube server URL")
    sonar_token: Optional[str] = Field(default=None, description="SonarQube token")
    sonar_project_key: Optional[str] = Field(default=None, description="SonarQube project key")

    # Snyk
    snyk_token: Optional[str] = Field(default=None, description="Snyk API token")

    # Tool commands ({image} and {workspace} are substituted)
    install_command: str = Field(default="npm ci", description="Dependency install command")
    test_command: str = Field(default="npm test", description="Unit test command")
    sonar_command: str = Field(default="sonar-scanner", description="SonarQube analysis command")
    build_command: str = Field(default="docker build -t {image} .", description="Image build command")
    sbom_command: str = Field(
        default="trivy image --format cyclonedx --output {workspace}/sbom.json {image}",
        description="SBOM generation command"
    )
    push_command: str = Field(default="docker push {image}", description="Image push command")

    # Workspace and artifacts
    workspace_dir: Path = Field(default=Path("."), description="Checked-out source directory")
    reports_dir: Path = Field(
        default=Path(".releasegate") / "reports",
        description="Directory for archived scanner reports"
    )
    artifact_bucket: Optional[str] = Field(default=None, description="S3 bucket for report archival")
    artifact_prefix: str = Field(default="releasegate", description="S3 key prefix")
    scratch_dir: Optional[Path] = Field(default=None, description="Scratch directory removed after each run")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="json",
        description="Log format: json, console"
    )

    # Timeouts
    scanner_timeout: int = Field(
        default=1800,
        description="Scanner execution timeout in seconds"
    )
    command_timeout: int = Field(
        default=1800,
        description="Build/test/push command timeout in seconds"
    )
    deploy_timeout: int = Field(
        default=600,
        description="Service stabilization timeout in seconds"
    )
    deploy_poll_interval: int = Field(
        default=15,
        description="Seconds between stabilization polls"
    )

    # Gate details
    max_details_per_tool: int = Field(
        default=5,
        description="Findings listed per tool in failure details"
    )

    def image_uri(self, tag: Optional[str] = None) -> Optional[str]:
        """Return the image URI for this build, or None without a repository."""
        if not self.image_repository:
            return None
        return f"{self.image_repository}:{tag or self.build_id or 'latest'}"

    def missing_required(self, deploy: bool = True) -> List[str]:
        """List required settings that are absent."""
        required = ['app_channel', 'ops_channel', 'image_repository']
        if deploy:
            required += ['cluster_name', 'service_name', 'task_family']
        return [name for name in required if not getattr(self, name)]


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (for testing)."""
    global _settings
    _settings = None
