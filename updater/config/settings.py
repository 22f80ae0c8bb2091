"""Settings loader: YAML configuration file, override file and Docker secrets."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from updater.core.exceptions import ConfigError

SECTIONS = ("logger", "stock", "keycloak", "realm", "clients", "mongo", "wekan", "audit")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Client representation keys accepted in the ``clients`` section, by type.
CLIENT_STRING_FIELDS = ("clientId", "name", "adminUrl", "rootUrl", "baseUrl", "description")
CLIENT_BOOL_FIELDS = (
    "authorizationServicesEnabled",
    "bearerOnly",
    "directAccessGrantsEnabled",
    "implicitFlowEnabled",
    "publicClient",
    "serviceAccountsEnabled",
    "standardFlowEnabled",
    "enabled",
)
CLIENT_LIST_FIELDS = ("redirectUris", "webOrigins")
CLIENT_MAP_FIELDS = ("attributes",)


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            print(f"[settings] ✓ Loaded {env_var} from environment (fallback)")
            return secret_value

    return None


@dataclass(frozen=True)
class LoggerConfig:
    level: str = "INFO"
    filename: Optional[str] = None


@dataclass(frozen=True)
class StockConfig:
    """Desired-state source and change guard."""
    users_and_roles_filename: str = ""
    client_for_roles: str = ""
    max_changes_to_accept: Optional[int] = None


@dataclass(frozen=True)
class KeycloakConfig:
    address: str
    realm: str
    username: str
    password: str = field(default="", repr=False)
    admin_realm: str = "master"
    protected_usernames: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ClientConfig:
    client_id: str
    representation: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MongoConfig:
    url: str = field(repr=False)
    database: str = "wekan"


@dataclass(frozen=True)
class WekanConfig:
    admin_username: str
    slug_domain_regexp: str = ".*"


@dataclass(frozen=True)
class AuditConfig:
    log_dir: str = ".runtime/audit"


@dataclass(frozen=True)
class Settings:
    """Validated configuration; built once per run."""
    logger: LoggerConfig = field(default_factory=LoggerConfig)
    stock: StockConfig = field(default_factory=StockConfig)
    keycloak: Optional[KeycloakConfig] = None
    realm: Mapping[str, Any] = field(default_factory=dict)
    clients: Tuple[ClientConfig, ...] = ()
    mongo: Optional[MongoConfig] = None
    wekan: Optional[WekanConfig] = None
    audit: AuditConfig = field(default_factory=AuditConfig)


# ─────────────────────────────────────────────────────────────────────────────
# Merge
# ─────────────────────────────────────────────────────────────────────────────

def merge_documents(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` over ``base``.

    Mapping sections are merged key by key with ``override`` winning,
    ``clients`` lists are concatenated.
    """
    merged = dict(base)
    for key, value in override.items():
        if key == "clients":
            merged["clients"] = list(base.get("clients") or []) + list(value or [])
        elif isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = merge_documents(base[key], value)
        elif value is not None:
            merged[key] = value
    return merged


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────

class _Section:
    """Typed accessors over one raw section; problems accumulate in ``problems``."""

    def __init__(self, name: str, raw: Any, problems: List[str]):
        self.name = name
        self.problems = problems
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            problems.append(f"{name}: expected a mapping, got {type(raw).__name__}")
            raw = {}
        self.raw = raw

    def string(self, key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
        value = self.raw.get(key)
        if value is None:
            if required:
                self.problems.append(f"{self.name}.{key}: required")
            return default
        if not isinstance(value, str):
            self.problems.append(f"{self.name}.{key}: expected a string, got {value!r}")
            return default
        return value

    def integer(self, key: str) -> Optional[int]:
        value = self.raw.get(key)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            self.problems.append(f"{self.name}.{key}: expected a positive integer, got {value!r}")
            return None
        return value

    def strings(self, key: str) -> Tuple[str, ...]:
        value = self.raw.get(key)
        if value is None:
            return ()
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            self.problems.append(f"{self.name}.{key}: expected a list of strings, got {value!r}")
            return ()
        return tuple(value)

    def unknown(self, known: Tuple[str, ...]) -> None:
        for key in sorted(set(self.raw) - set(known)):
            self.problems.append(f"{self.name}.{key}: unknown field")


def _client(index: int, raw: Any, problems: List[str]) -> Optional[ClientConfig]:
    where = f"clients[{index}]"
    if not isinstance(raw, dict):
        problems.append(f"{where}: expected a mapping, got {type(raw).__name__}")
        return None
    representation: Dict[str, Any] = {}
    for key, value in raw.items():
        if key in CLIENT_STRING_FIELDS:
            ok = isinstance(value, str)
            expected = "a string"
        elif key in CLIENT_BOOL_FIELDS:
            ok = isinstance(value, bool)
            expected = "a boolean"
        elif key in CLIENT_LIST_FIELDS:
            ok = isinstance(value, list) and all(isinstance(v, str) for v in value)
            expected = "a list of strings"
        elif key in CLIENT_MAP_FIELDS:
            ok = isinstance(value, dict) and all(isinstance(v, str) for v in value.values())
            expected = "a mapping of strings"
        else:
            problems.append(f"{where}.{key}: unsupported client parameter")
            continue
        if not ok:
            problems.append(f"{where}.{key}: expected {expected}, got {value!r}")
            continue
        representation[key] = value
    client_id = representation.get("clientId")
    if not client_id:
        if "clientId" not in raw:
            problems.append(f"{where}.clientId: required")
        return None
    representation.setdefault("name", client_id)
    return ClientConfig(client_id=client_id, representation=MappingProxyType(representation))


def parse_settings(document: Any, base_dir: Optional[Path] = None) -> Settings:
    """Validate a merged configuration document.

    Raises:
        ConfigError: listing every malformed field
    """
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ConfigError([f"top level: expected a mapping, got {type(document).__name__}"])
    problems: List[str] = []
    for key in sorted(set(document) - set(SECTIONS)):
        problems.append(f"{key}: unknown section")

    section = _Section("logger", document.get("logger"), problems)
    section.unknown(("level", "filename"))
    level = (section.string("level", "INFO") or "INFO").upper()
    if level not in LOG_LEVELS:
        problems.append(f"logger.level: unknown level {level!r}")
    logger_config = LoggerConfig(level=level, filename=section.string("filename"))

    section = _Section("stock", document.get("stock"), problems)
    section.unknown(("users_and_roles_filename", "client_for_roles", "max_changes_to_accept"))
    users_file = section.string("users_and_roles_filename", "") or ""
    if users_file and base_dir is not None and not Path(users_file).is_absolute():
        users_file = str(base_dir / users_file)
    stock = StockConfig(
        users_and_roles_filename=users_file,
        client_for_roles=section.string("client_for_roles", "") or "",
        max_changes_to_accept=section.integer("max_changes_to_accept"),
    )

    keycloak = None
    if document.get("keycloak") is not None:
        section = _Section("keycloak", document["keycloak"], problems)
        section.unknown(("address", "realm", "username", "password", "admin_realm", "protected_usernames"))
        password = section.string("password") or _load_secret_from_file("keycloak_password", "KEYCLOAK_PASSWORD")
        if not password:
            problems.append("keycloak.password: not set in configuration, /run/secrets or KEYCLOAK_PASSWORD")
        keycloak = KeycloakConfig(
            address=(section.string("address", required=True) or "").rstrip("/"),
            realm=section.string("realm", required=True) or "",
            username=section.string("username", required=True) or "",
            password=password or "",
            admin_realm=section.string("admin_realm", "master") or "master",
            protected_usernames=section.strings("protected_usernames"),
        )
        if not stock.client_for_roles:
            problems.append("stock.client_for_roles: required when the keycloak section is set")

    realm = _Section("realm", document.get("realm"), problems).raw

    clients: List[ClientConfig] = []
    raw_clients = document.get("clients") or []
    if not isinstance(raw_clients, list):
        problems.append(f"clients: expected a list, got {type(raw_clients).__name__}")
        raw_clients = []
    for index, raw in enumerate(raw_clients):
        client = _client(index, raw, problems)
        if client is not None:
            clients.append(client)

    mongo = None
    if document.get("mongo") is not None:
        section = _Section("mongo", document["mongo"], problems)
        section.unknown(("url", "database"))
        url = section.string("url") or _load_secret_from_file("mongo_url", "MONGO_URL")
        if not url:
            problems.append("mongo.url: not set in configuration, /run/secrets or MONGO_URL")
        mongo = MongoConfig(url=url or "", database=section.string("database", "wekan") or "wekan")

    wekan = None
    if document.get("wekan") is not None:
        section = _Section("wekan", document["wekan"], problems)
        section.unknown(("admin_username", "slug_domain_regexp"))
        wekan = WekanConfig(
            admin_username=section.string("admin_username", required=True) or "",
            slug_domain_regexp=section.string("slug_domain_regexp", ".*") or ".*",
        )
        if mongo is None:
            problems.append("mongo: required when the wekan section is set")

    section = _Section("audit", document.get("audit"), problems)
    section.unknown(("log_dir",))
    audit_config = AuditConfig(log_dir=section.string("log_dir", AuditConfig.log_dir) or AuditConfig.log_dir)

    if problems:
        raise ConfigError(problems)
    return Settings(
        logger=logger_config,
        stock=stock,
        keycloak=keycloak,
        realm=MappingProxyType(dict(realm)),
        clients=tuple(clients),
        mongo=mongo,
        wekan=wekan,
        audit=audit_config,
    )


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError([f"{path}: cannot read ({exc})"]) from exc
    except yaml.YAMLError as exc:
        raise ConfigError([f"{path}: invalid YAML ({exc})"]) from exc
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError([f"{path}: expected a mapping at top level"])
    return document


def load_settings(path: str | Path, override_path: str | Path | None = None) -> Settings:
    """Load configuration from ``path``, merged with ``override_path`` when given."""
    path = Path(path)
    document = _read_yaml(path)
    if override_path:
        document = merge_documents(document, _read_yaml(Path(override_path)))
    settings = parse_settings(document, base_dir=path.parent)
    realm = settings.keycloak.realm if settings.keycloak else "-"
    print(f"[settings] realm={realm}; clients={len(settings.clients)}; wekan={'on' if settings.wekan else 'off'}")
    return settings


def configure_logging(level: str = "INFO", filename: Optional[str] = None) -> None:
    """Configure root logging for the CLI."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if filename:
        handlers.append(logging.FileHandler(filename, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
        force=True,
    )
