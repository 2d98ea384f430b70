"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "docs_user"
    password: str = "docs_password"
    name: str = "documents_view"


@dataclass
class PaginationConfig:
    """Document list pagination"""
    default_per_page: int = 15
    max_per_page: int = 100
    history_per_page: int = 10


@dataclass
class AuditConfig:
    """Which document actions are written to the audit trail"""
    log_document_views: bool = True
    log_metadata_changes: bool = True
    log_document_processing: bool = True
    history_retention_days: int = 365


@dataclass
class DocumentsConfig:
    """Document processing rules"""
    trash_retention_days: int = 90
    require_metadata_for_processing: bool = True
    required_fields: List[str] = field(default_factory=lambda: ['policy_number', 'document_description'])
    dependent_fields: Dict[str, str] = field(default_factory=lambda: {
        'loss_sequence': 'policy_number',
        'claimant': 'loss_sequence',
    })
    url_expiration_minutes: int = 60
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    features: Dict[str, bool] = field(default_factory=lambda: {
        'enable_document_history': True,
        'enable_trash_restore': True,
        'enable_document_assignment': True,
    })


@dataclass
class StorageConfig:
    """Document file storage"""
    root: str = "storage/documents"
    max_file_size_mb: int = 50
    signing_key: str = "change-me"
    allowed_mime_types: List[str] = field(default_factory=lambda: [
        'application/pdf',
        'application/msword',
        'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
        'application/vnd.ms-excel',
        'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        'image/jpeg',
        'image/png',
        'image/tiff',
        'text/plain',
    ])


@dataclass
class ViewerConfig:
    """Embedded PDF viewer"""
    sdk_url: str = "https://documentcloud.adobe.com/view-sdk/main.js"
    client_id: str = ""
    default_zoom: str = "FitWidth"
    viewer_options: Dict[str, Any] = field(default_factory=lambda: {
        'embedMode': 'SIZED_CONTAINER',
        'showDownloadPDF': False,
        'showPrintPDF': False,
        'showAnnotationTools': False,
        'enableFormFilling': False,
    })


@dataclass
class RateLimitGroupConfig:
    """One rate limit group"""
    max_requests: int = 60
    window_seconds: int = 60


@dataclass
class RateLimitConfig:
    """Per-client rate limits keyed by group name"""
    enabled: bool = True
    # Peers allowed to set X-Forwarded-For (IPs or CIDR ranges)
    trusted_proxies: List[str] = field(default_factory=list)
    groups: Dict[str, RateLimitGroupConfig] = field(default_factory=lambda: {
        'document-processing': RateLimitGroupConfig(30, 60),
        'metadata': RateLimitGroupConfig(60, 60),
        'document-history': RateLimitGroupConfig(60, 60),
        'documents': RateLimitGroupConfig(100, 60),
        'api': RateLimitGroupConfig(60, 60),
    })


@dataclass
class MaintenanceConfig:
    """Maintenance mode"""
    enabled: bool = False
    message: str = (
        "The application is currently undergoing scheduled maintenance. "
        "We expect to be back online shortly."
    )
    retry_after: int = 3600
    estimated_completion: Optional[str] = None
    except_paths: List[str] = field(default_factory=lambda: [
        '/api/health-check',
        '/api/documents/*/status',
        '/api/documents/*/file',
    ])


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/documents.log"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.documents: DocumentsConfig = DocumentsConfig()
        self.storage: StorageConfig = StorageConfig()
        self.viewer: ViewerConfig = ViewerConfig()
        self.rate_limits: RateLimitConfig = RateLimitConfig()
        self.maintenance: MaintenanceConfig = MaintenanceConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.database: DatabaseConfig = DatabaseConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        self._parse_documents()
        self._parse_storage()
        self._parse_viewer()
        self._parse_rate_limits()
        self._parse_maintenance()
        self._parse_logging()
        self._parse_database()
        self._validate()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name)
        )

    def _parse_documents(self) -> None:
        """Parse document processing configuration"""
        cfg = self._raw_config.get('documents', {})
        defaults = DocumentsConfig()

        pagination_cfg = cfg.get('pagination', {})
        pagination = PaginationConfig(
            default_per_page=pagination_cfg.get('default_per_page', 15),
            max_per_page=pagination_cfg.get('max_per_page', 100),
            history_per_page=pagination_cfg.get('history_per_page', 10)
        )

        audit_cfg = cfg.get('audit', {})
        audit = AuditConfig(
            log_document_views=audit_cfg.get('log_document_views', True),
            log_metadata_changes=audit_cfg.get('log_metadata_changes', True),
            log_document_processing=audit_cfg.get('log_document_processing', True),
            history_retention_days=audit_cfg.get('history_retention_days', 365)
        )

        self.documents = DocumentsConfig(
            trash_retention_days=cfg.get('trash_retention_days', 90),
            require_metadata_for_processing=cfg.get('require_metadata_for_processing', True),
            required_fields=cfg.get('required_fields', defaults.required_fields),
            dependent_fields=cfg.get('dependent_fields', defaults.dependent_fields),
            url_expiration_minutes=cfg.get('url_expiration_minutes', 60),
            pagination=pagination,
            audit=audit,
            features={**defaults.features, **cfg.get('features', {})}
        )

    def _parse_storage(self) -> None:
        """Parse file storage configuration"""
        cfg = self._raw_config.get('storage', {})
        self.storage = StorageConfig(
            root=cfg.get('root', self.storage.root),
            max_file_size_mb=cfg.get('max_file_size_mb', 50),
            signing_key=cfg.get('signing_key', self.storage.signing_key),
            allowed_mime_types=cfg.get('allowed_mime_types', self.storage.allowed_mime_types)
        )

    def _parse_viewer(self) -> None:
        """Parse PDF viewer configuration"""
        cfg = self._raw_config.get('viewer', {})
        defaults = ViewerConfig()
        self.viewer = ViewerConfig(
            sdk_url=cfg.get('sdk_url', defaults.sdk_url),
            client_id=cfg.get('client_id', ''),
            default_zoom=cfg.get('default_zoom', defaults.default_zoom),
            viewer_options={**defaults.viewer_options, **cfg.get('viewer_options', {})}
        )

    def _parse_rate_limits(self) -> None:
        """Parse rate limit configuration"""
        cfg = self._raw_config.get('rate_limits', {})
        groups = dict(RateLimitConfig().groups)
        for name, group_cfg in (cfg.get('groups') or {}).items():
            groups[name] = RateLimitGroupConfig(
                max_requests=group_cfg.get('max_requests', 60),
                window_seconds=group_cfg.get('window_seconds', 60)
            )
        self.rate_limits = RateLimitConfig(
            enabled=cfg.get('enabled', True),
            groups=groups,
            trusted_proxies=[str(proxy) for proxy in (cfg.get('trusted_proxies') or [])]
        )

    def _parse_maintenance(self) -> None:
        """Parse maintenance mode configuration"""
        cfg = self._raw_config.get('maintenance', {})
        defaults = MaintenanceConfig()
        self.maintenance = MaintenanceConfig(
            enabled=cfg.get('enabled', False),
            message=cfg.get('message', defaults.message),
            retry_after=cfg.get('retry_after', 3600),
            estimated_completion=cfg.get('estimated_completion'),
            except_paths=cfg.get('except_paths', defaults.except_paths)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', 'logs/documents.log'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (secrets omitted)"""
        return {
            'documents': {
                'trash_retention_days': self.documents.trash_retention_days,
                'require_metadata_for_processing': self.documents.require_metadata_for_processing,
                'required_fields': self.documents.required_fields,
                'dependent_fields': self.documents.dependent_fields,
                'url_expiration_minutes': self.documents.url_expiration_minutes,
                'pagination': {
                    'default_per_page': self.documents.pagination.default_per_page,
                    'max_per_page': self.documents.pagination.max_per_page,
                },
                'features': self.documents.features,
            },
            'storage': {
                'root': self.storage.root,
                'max_file_size_mb': self.storage.max_file_size_mb,
                'allowed_mime_types': self.storage.allowed_mime_types,
            },
            'viewer': {
                'sdk_url': self.viewer.sdk_url,
                'default_zoom': self.viewer.default_zoom,
            },
            'maintenance': {
                'enabled': self.maintenance.enabled,
                'retry_after': self.maintenance.retry_after,
            },
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        pagination = self.documents.pagination
        if pagination.default_per_page < 1 or pagination.max_per_page < pagination.default_per_page:
            raise ConfigurationError(
                "documents.pagination: default_per_page must be >= 1 and <= max_per_page"
            )
        if self.storage.max_file_size_mb <= 0:
            raise ConfigurationError("storage.max_file_size_mb must be positive")
        for name, group in self.rate_limits.groups.items():
            if group.max_requests < 1 or group.window_seconds < 1:
                raise ConfigurationError(f"rate_limits.groups.{name}: limits must be positive")
        for child, parent in self.documents.dependent_fields.items():
            if child == parent:
                raise ConfigurationError(f"documents.dependent_fields: {child} cannot depend on itself")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
