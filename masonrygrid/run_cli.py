import argparse
import json
import logging
import os
import sys
import warnings
from dataclasses import replace
from pathlib import Path

from masonrygrid.dimensions.dimension_batch_service import \
    DimensionBatchService
from masonrygrid.dimensions.dimension_resolver import (DimensionResolver,
                                                       ResolverConfig)
from masonrygrid.layout.masonry_context import OrderingConfig, PositionerConfig
from masonrygrid.layout.masonry_layout import (choose_column_count,
                                               config_for_viewport,
                                               dimension_getter,
                                               effective_container_width,
                                               layout_with_precomputed)
from masonrygrid.layout.masonry_precompute_service import \
    MasonryPrecomputeService
from masonrygrid.models.masonry_item import Item, OrderingValidationError
from masonrygrid.utils.dimension_cache import (DimensionCache,
                                               DimensionCacheConfig)
from masonrygrid.utils.settings import parse_column_profiles

logger = logging.getLogger(__name__)


def suppress_warnings():
    """Only show errors when not in a development environment."""
    environment = os.getenv('MASONRYGRID_ENVIRONMENT')
    if environment == 'development':
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')
        logger.debug('Running in development environment.')
        return
    logging.getLogger('exifread').setLevel(logging.ERROR)
    logging.getLogger('PIL').setLevel(logging.ERROR)
    logging.basicConfig(level=logging.WARNING,
                        format='[%(levelname)s] %(message)s')
    warnings.simplefilter('ignore')


def load_items(path: Path) -> list[Item]:
    with open(path, encoding='utf-8') as items_file:
        data = json.load(items_file)
    if isinstance(data, dict):
        data = data.get('items', [])
    return [Item.from_dict(entry) for entry in data]


def build_resolver(cdn_base_url: str = None) -> DimensionResolver:
    cache = DimensionCache.from_config(DimensionCacheConfig.from_settings())
    config = ResolverConfig.from_settings()
    if cdn_base_url is not None:
        config = replace(config, cdn_base_url=cdn_base_url)
    return DimensionResolver(cache, config)


def _resolve_items(items, resolver) -> tuple[list[Item], dict]:
    batch = DimensionBatchService(resolver).resolve_items(items)
    resolved_items = [item.with_dimension(batch.dimensions[item.id])
                      for item in items]
    return resolved_items, batch.dimensions


def command_order(args) -> dict:
    items = load_items(args.items)
    config = OrderingConfig.from_settings()
    if args.profiles:
        config = replace(config, profiles=parse_column_profiles(args.profiles))
    resolver = build_resolver(args.cdn_base_url)
    try:
        precomputed = MasonryPrecomputeService(config).precompute_for_references(
            items, DimensionBatchService(resolver))
    finally:
        resolver.close()
        resolver.cache.close()
    return precomputed.to_dict()


def command_layout(args) -> dict:
    items = load_items(args.items)
    positioner_config = config_for_viewport(
        args.width, PositionerConfig.from_settings())
    if args.columns:
        column_count = args.columns
    else:
        column_count = choose_column_count(args.width, positioner_config)
    container_width = effective_container_width(args.width, positioner_config)

    resolver = build_resolver(args.cdn_base_url)
    try:
        resolved_items, dimensions = _resolve_items(items, resolver)
    finally:
        resolver.close()
        resolver.cache.close()
    precomputed = MasonryPrecomputeService(
        OrderingConfig.from_settings()).precompute(resolved_items)
    items_by_id = {item.id: item for item in items}
    result = layout_with_precomputed(
        precomputed, items, column_count,
        dimension_getter(items_by_id, dimensions),
        container_width=container_width, config=positioner_config)
    return result.to_dict()


def command_resolve(args) -> dict:
    resolver = build_resolver(args.cdn_base_url)
    try:
        resolved = {}
        for reference in args.references:
            dimension = resolver.resolve(reference)
            resolved[reference] = {'width': dimension.width,
                                   'height': dimension.height,
                                   'source': dimension.source}
        return resolved
    finally:
        resolver.close()
        resolver.cache.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='masonrygrid',
        description='Order and lay out images in a balanced masonry grid.')
    subparsers = parser.add_subparsers(dest='command', required=True)

    order_parser = subparsers.add_parser(
        'order', help='precompute display orders for each column profile')
    order_parser.add_argument('items', type=Path, help='items JSON file')
    order_parser.add_argument('--profiles', help="column profiles, e.g. '2,4'")
    order_parser.set_defaults(handler=command_order)

    layout_parser = subparsers.add_parser(
        'layout', help='compute absolute positions for a viewport width')
    layout_parser.add_argument('items', type=Path, help='items JSON file')
    layout_parser.add_argument('--width', type=int, required=True,
                               help='viewport width in pixels')
    layout_parser.add_argument('--columns', type=int,
                               help='override the responsive column count')
    layout_parser.set_defaults(handler=command_layout)

    resolve_parser = subparsers.add_parser(
        'resolve', help='resolve image references to dimensions')
    resolve_parser.add_argument('references', nargs='+')
    resolve_parser.set_defaults(handler=command_resolve)

    parser.add_argument('--cdn-base-url',
                        help='rewrite upload paths onto this CDN base URL')
    return parser


def main(argv=None) -> int:
    suppress_warnings()
    args = build_parser().parse_args(argv)
    try:
        output = args.handler(args)
    except (OSError, ValueError) as e:
        # OrderingValidationError and bad JSON are both ValueErrors
        kind = ('Invalid items' if isinstance(e, OrderingValidationError)
                else 'Error')
        print(f'{kind}: {e}', file=sys.stderr)
        return 1
    json.dump(output, sys.stdout, indent=2)
    sys.stdout.write('\n')
    return 0


if __name__ == '__main__':
    sys.exit(main())
