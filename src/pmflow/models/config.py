"""Configuration models."""

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pmflow.errors import ConfigurationError


class LocalStoreConfig(BaseModel):
    """Configuration for the local markdown work item store."""

    store_dir: Path = Field(Path(".claude"), description="Root of the markdown store")
    strict_dependencies: bool = Field(
        True, description="Resolve a dependency only when it is closed"
    )

    class Config:
        """Pydantic config."""
        json_schema_extra = {
            "example": {
                "store_dir": ".claude",
                "strict_dependencies": True,
            }
        }

    @property
    def epics_dir(self) -> Path:
        return self.store_dir / "epics"

    @property
    def prds_dir(self) -> Path:
        return self.store_dir / "prds"


class AzureDevOpsConfig(BaseModel):
    """Configuration for an Azure DevOps work item service."""

    organization: Optional[str] = Field(None, description="Organization name")
    project: Optional[str] = Field(None, description="Project name")
    pat: Optional[str] = Field(None, description="Personal access token")
    base_url: str = Field("https://dev.azure.com", description="Service root URL")
    api_version: str = Field("7.0", description="REST API version")
    timeout: float = Field(30.0, description="Request timeout in seconds")

    class Config:
        """Pydantic config."""
        json_schema_extra = {
            "example": {
                "organization": "contoso",
                "project": "web",
                "pat": "<token>",
                "base_url": "https://dev.azure.com",
                "api_version": "7.0",
            }
        }

    def validate_credentials(self) -> None:
        """Raise ConfigurationError naming the first missing setting.

        Raises:
            ConfigurationError: If organization, project or token is unset
        """
        required = (
            ("organization", "AZURE_DEVOPS_ORG"),
            ("project", "AZURE_DEVOPS_PROJECT"),
            ("pat", "AZURE_DEVOPS_PAT"),
        )
        for attr, env_name in required:
            if not getattr(self, attr):
                raise ConfigurationError(f"Missing required environment variable: {env_name}")


class GitHubConfig(BaseModel):
    """Configuration for a GitHub issue tracker."""

    owner: Optional[str] = Field(None, description="Repository owner")
    repo: Optional[str] = Field(None, description="Repository name")
    token: Optional[str] = Field(None, description="API token")
    api_url: str = Field("https://api.github.com", description="API root URL")
    timeout: float = Field(30.0, description="Request timeout in seconds")

    def validate_credentials(self) -> None:
        """Raise ConfigurationError when owner or repo is unset."""
        if not self.owner:
            raise ConfigurationError("Missing required environment variable: GITHUB_OWNER")
        if not self.repo:
            raise ConfigurationError("Missing required environment variable: GITHUB_REPO")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Local store
    store_dir: str = Field(".claude", validation_alias=AliasChoices("store_dir", "pmflow_store_dir"))
    strict_dependencies: bool = Field(
        True, validation_alias=AliasChoices("strict_dependencies", "pmflow_strict_dependencies")
    )
    max_alternatives: int = Field(
        3, validation_alias=AliasChoices("max_alternatives", "pmflow_max_alternatives")
    )

    # Remote cache
    cache_dir: str = Field(
        "~/.pmflow/cache", validation_alias=AliasChoices("cache_dir", "pmflow_cache_dir")
    )
    cache_ttl: int = Field(300, validation_alias=AliasChoices("cache_ttl", "pmflow_cache_ttl"))

    # Azure DevOps
    azure_devops_org: Optional[str] = None
    azure_devops_project: Optional[str] = None
    azure_devops_pat: Optional[str] = None
    azure_devops_base_url: str = "https://dev.azure.com"
    azure_devops_api_version: str = "7.0"

    # GitHub
    github_owner: Optional[str] = None
    github_repo: Optional[str] = None
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"

    # Logging
    log_level: str = Field(
        "WARNING", validation_alias=AliasChoices("log_level", "pmflow_log_level")
    )

    def local_store(self) -> LocalStoreConfig:
        return LocalStoreConfig(
            store_dir=Path(self.store_dir),
            strict_dependencies=self.strict_dependencies,
        )

    def azure_devops(self) -> AzureDevOpsConfig:
        return AzureDevOpsConfig(
            organization=self.azure_devops_org,
            project=self.azure_devops_project,
            pat=self.azure_devops_pat,
            base_url=self.azure_devops_base_url,
            api_version=self.azure_devops_api_version,
        )

    def github(self) -> GitHubConfig:
        return GitHubConfig(
            owner=self.github_owner,
            repo=self.github_repo,
            token=self.github_token,
            api_url=self.github_api_url,
        )

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()
