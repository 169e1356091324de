"""Dev server configuration via pydantic-settings and package.json."""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Mode – anything other than "production" is development
    NODE_ENV: str = "development"

    # Project layout – package.json, public/ and src/ live under PROJECT_ROOT
    PROJECT_ROOT: str = os.getcwd()
    BUILD_DIR: Optional[str] = None

    # Proxy listener
    PROXY_HOST: str = "0.0.0.0"
    PROXY_PORT: int = 3000

    # esbuild serve facility
    UPSTREAM_HOST: str = "127.0.0.1"
    UPSTREAM_PORT: int = 8000
    UPSTREAM_START_TIMEOUT: float = 10.0
    ESBUILD_BIN: str = "esbuild"

    @property
    def is_production(self) -> bool:
        return self.NODE_ENV == "production"

    @property
    def root(self) -> Path:
        return Path(self.PROJECT_ROOT).resolve()

    @property
    def build_dir(self) -> Path:
        if self.BUILD_DIR:
            return Path(self.BUILD_DIR).resolve()
        return self.root / "build"

    @property
    def serve_dir(self) -> Path:
        return self.build_dir / "serve"

    @property
    def public_dir(self) -> Path:
        return self.root / "public"

    @property
    def template_path(self) -> Path:
        return self.public_dir / "index.html"

    @property
    def package_json(self) -> Path:
        return self.root / "package.json"

    @property
    def csp_config(self) -> Path:
        return self.root / "csp.json"


# ── package.json ─────────────────────────────────────────────────────────────

class BuildSection(BaseModel):
    entrypoints: List[str] = Field(default_factory=lambda: ["src/index.tsx"])
    target: List[str] = Field(default_factory=lambda: ["es2020"])


class ExternalFiles(BaseModel):
    development: List[str] = Field(default_factory=list)
    production: List[str] = Field(default_factory=list)


class PackageManifest(BaseModel):
    """The subset of package.json the dev server reads."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    homepage: str = "/"
    build: BuildSection = Field(default_factory=BuildSection)
    external_files: ExternalFiles = Field(default_factory=ExternalFiles, alias="externalFiles")

    def externals(self, is_production: bool) -> List[str]:
        return self.external_files.production if is_production else self.external_files.development


def load_package_manifest(path: Path) -> PackageManifest:
    """Read package.json. A missing file is a fatal startup error."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return PackageManifest.model_validate(data)


# ── Site config ──────────────────────────────────────────────────────────────

class SiteConfig(BaseModel):
    """Immutable per-process site configuration."""

    model_config = ConfigDict(frozen=True)

    path_prefix: str = ""
    is_production: bool = False


def build_site_config(settings: Settings, manifest: PackageManifest) -> SiteConfig:
    site = SiteConfig(
        path_prefix=manifest.homepage.rstrip("/"),
        is_production=settings.is_production,
    )
    logger.info("Current mode: %s", "production" if site.is_production else "development")
    logger.info("Site root: %s", manifest.homepage)
    return site


def load_settings(**overrides) -> Settings:
    """Build settings, reading .env from the project root when present."""
    s = Settings(**overrides)
    env_file = s.root / ".env"
    if env_file.is_file():
        s = Settings(_env_file=str(env_file), _env_file_encoding="utf-8", **overrides)
    logger.info("Build folder path: %s", s.build_dir)
    logger.info("Public files path: %s", s.public_dir)
    return s
