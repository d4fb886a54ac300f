# sharing_detector/app.py
import logging
from dataclasses import dataclass

from sharing_detector.analyzer.live import LiveAnalyzer
from sharing_detector.analyzer.scoring import ScoringPolicy
from sharing_detector.database.history import HistoryStore
from sharing_detector.database.operations import DatabaseManager
from sharing_detector.router.nas import NasRegistry
from sharing_detector.router.rules import NasRuleManager
from sharing_detector.router.sessions import RouterOSSessionSource, SubscriberDirectory
from sharing_detector.scheduler.scanner import ScanScheduler
from sharing_detector.scheduler.settings import SettingsManager

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """The wired components shared by the API server and the CLI"""
    config: dict
    db: DatabaseManager
    nas_registry: NasRegistry
    rule_manager: NasRuleManager
    live_analyzer: LiveAnalyzer
    history: HistoryStore
    settings: SettingsManager
    scheduler: ScanScheduler
    max_workers: int = 8


def build_context(config, session_source=None, client_factory=None) -> AppContext:
    """Create every component from a loaded configuration"""
    router_cfg = config.get('router', {})
    scanner_cfg = config.get('scanner', {})
    timeout = router_cfg.get('timeout', 5)
    max_workers = scanner_cfg.get('max_workers', 8)

    db = DatabaseManager(config.get('database', {}).get('url', 'sqlite:///sharing_detector.db'))
    registry = NasRegistry.from_config(config)
    policy = ScoringPolicy.from_config(config.get('scoring'))

    rule_kwargs = {'comment_prefix': router_cfg.get('rule_comment_prefix', 'ISP'), 'timeout': timeout}
    directory = SubscriberDirectory.from_config(config)
    source_kwargs = {'timeout': timeout, 'directory': directory}
    if client_factory is not None:
        rule_kwargs['client_factory'] = client_factory
        source_kwargs['client_factory'] = client_factory

    rule_manager = NasRuleManager(**rule_kwargs)
    if session_source is None:
        session_source = RouterOSSessionSource(**source_kwargs)

    live_analyzer = LiveAnalyzer(
        registry, session_source, policy,
        nas_timeout=scanner_cfg.get('nas_timeout', 10),
        max_workers=max_workers
    )
    history = HistoryStore(db)
    settings = SettingsManager(db)
    scheduler = ScanScheduler(
        live_analyzer, history, settings,
        check_interval=scanner_cfg.get('check_interval', 30)
    )

    logger.info(f"Loaded {len(registry)} NAS devices and {len(directory)} subscriber directory entries")
    return AppContext(
        config=config,
        db=db,
        nas_registry=registry,
        rule_manager=rule_manager,
        live_analyzer=live_analyzer,
        history=history,
        settings=settings,
        scheduler=scheduler,
        max_workers=max_workers
    )
