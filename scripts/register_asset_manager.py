import argparse
import logging

from asset_exchange.config import configure_logging, get_settings
from asset_exchange.database import get_engine, get_session_factory
from asset_exchange.enums import ErrorKind
from asset_exchange.models.base import Base
from asset_exchange.services.registry import CorrelationRegistry

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register or resolve an external asset manager")
    parser.add_argument("qualified_name", help="Unique qualified name of the external asset manager")
    parser.add_argument("--display-name", help="Human readable name")
    parser.add_argument("--description", help="Free text description")
    parser.add_argument(
        "--resolve-existing",
        action="store_true",
        help="Print the existing identifier instead of failing when the name is already registered",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = get_settings()
    configure_logging(settings)
    Base.metadata.create_all(bind=get_engine())

    with get_session_factory()() as db:
        registry = CorrelationRegistry(
            db,
            actor=settings.operator_id,
            default_permitted_synchronization=settings.default_permitted_synchronization,
        )
        outcome = registry.register_external_asset_manager(
            args.qualified_name,
            display_name=args.display_name,
            description=args.description,
        )
        if outcome.error is None:
            print(outcome.value)
            return 0
        if outcome.error.kind == ErrorKind.conflict and args.resolve_existing:
            existing = registry.resolve_external_asset_manager_identifier(args.qualified_name)
            print(existing.unwrap())
            return 0

    logger.error("Registration failed: %s", outcome.error)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
