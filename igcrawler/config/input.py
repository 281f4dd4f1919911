"""Run input model.

Field names follow the camelCase keys of the input JSON; a run is rejected
with ConfigurationError before any page is opened when the input is unusable.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..consts import ScrapeType, SearchType
from ..hooks import validate_hook_source
from ..reliability import ConfigurationError


class ProxyConfig(BaseModel):
    """Proxy every browser and search request goes through."""
    server: str
    username: Optional[str] = None
    password: Optional[str] = None
    bypass: Optional[str] = None

    @field_validator("server")
    @classmethod
    def _server_has_scheme(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("proxy server cannot be empty")
        if "://" not in v:
            v = f"http://{v}"
        return v

    @classmethod
    def from_value(cls, value: Union[str, Dict[str, Any]]) -> "ProxyConfig":
        """Accept either a proxy URL (credentials inline) or an object."""
        if isinstance(value, str):
            parts = urlsplit(value if "://" in value else f"http://{value}")
            netloc = parts.hostname or ""
            if parts.port:
                netloc = f"{netloc}:{parts.port}"
            return cls(
                server=urlunsplit((parts.scheme, netloc, "", "", "")),
                username=parts.username,
                password=parts.password,
            )
        # Empty optional entries are dropped so they don't reach the launcher
        return cls(**{k: v for k, v in value.items() if v not in (None, "", [])})

    def to_playwright(self) -> Dict[str, str]:
        return self.model_dump(exclude_none=True)

    def to_url(self) -> str:
        """Proxy URL with inline credentials, as httpx expects it."""
        if not self.username:
            return self.server
        parts = urlsplit(self.server)
        auth = quote(self.username, safe="")
        if self.password:
            auth = f"{auth}:{quote(self.password, safe='')}"
        return urlunsplit((parts.scheme, f"{auth}@{parts.netloc}", parts.path, "", ""))


class CrawlInput(BaseModel):
    """Validated run input."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    results_type: ScrapeType = Field(alias="resultsType")
    results_limit: int = Field(default=200, alias="resultsLimit", ge=0)
    direct_urls: List[str] = Field(default_factory=list, alias="directUrls")
    proxy: ProxyConfig
    search: Optional[str] = None
    search_type: SearchType = Field(default=SearchType.HASHTAG, alias="searchType")
    search_limit: int = Field(default=10, alias="searchLimit", ge=1, le=100)
    extend_output_function: Optional[str] = Field(default=None, alias="extendOutputFunction")
    max_concurrency: Optional[int] = Field(default=None, alias="maxConcurrency", ge=1)

    @field_validator("direct_urls", mode="before")
    @classmethod
    def _normalise_urls(cls, v: Any) -> List[str]:
        if v is None:
            return []
        urls = []
        for item in v:
            # Request-list style entries: {"url": "..."}
            url = item.get("url") if isinstance(item, dict) else item
            if isinstance(url, str) and url.strip():
                urls.append(url.strip())
        return urls

    @field_validator("proxy", mode="before")
    @classmethod
    def _parse_proxy(cls, v: Any) -> Any:
        if isinstance(v, (str, dict)):
            return ProxyConfig.from_value(v)
        return v

    @field_validator("extend_output_function")
    @classmethod
    def _check_hook(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        validate_hook_source(v)
        return v.strip()

    @classmethod
    def from_raw(cls, data: Dict[str, Any]) -> "CrawlInput":
        """Validate raw input, raising ConfigurationError with a readable message."""
        if not data.get("proxy"):
            raise ConfigurationError("Proxy is required! Please set the 'proxy' input field.")

        results_type = data.get("resultsType")
        if not results_type:
            raise ConfigurationError("Type of results is required! Please set the 'resultsType' input field.")
        if results_type not in {t.value for t in ScrapeType}:
            raise ConfigurationError(
                f"Type of results '{results_type}' is not supported! "
                f"Use one of: {', '.join(t.value for t in ScrapeType)}."
            )

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(f"Invalid input: {problems}", cause=e) from e
