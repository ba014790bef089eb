"""Command-line entry point: ``spatepi-workshop``.

Usage:
    spatepi-workshop [CONFIG] [--scenario PATH] [--sections geostat areal ...]
                     [--seed N] [--output-dir DIR] [--no-figures]
                     [--log-level LEVEL] [--log-file PATH]

CONFIG defaults to configs/default.yaml when that file exists, otherwise
the built-in defaults are used. Flags are applied as the last override
layer (base → scenario → flags).
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from spatepi import __version__
from spatepi.config import (
    SECTION_NAMES,
    WorkshopConfig,
    config_from_dict,
    deep_merge,
    load_config,
)
from spatepi.logging_config import configure_logging
from spatepi.workshop import run_workshop

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("configs/default.yaml")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='spatepi-workshop',
        description='Run the spatial-epidemiology workshop end-to-end',
    )
    parser.add_argument('config', nargs='?', type=Path, default=None,
                        help=f'Base YAML config (default: {DEFAULT_CONFIG} if present)')
    parser.add_argument('--scenario', type=Path, default=None,
                        help='Scenario YAML merged over the base config')
    parser.add_argument('--sections', nargs='+', choices=SECTION_NAMES, default=None,
                        help='Sections to run, in order')
    parser.add_argument('--seed', type=int, default=None, help='Master seed')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Directory for figures and summary.json')
    parser.add_argument('--no-figures', action='store_true',
                        help='Skip figure rendering')
    parser.add_argument('--log-level', type=str, default=None,
                        help='DEBUG, INFO, WARNING, ... (default: from config)')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Also write the log to this file')
    parser.add_argument('--version', action='version',
                        version=f'%(prog)s {__version__}')
    return parser


def _flag_overrides(args: argparse.Namespace) -> Dict:
    overrides: Dict = {}
    if args.seed is not None:
        overrides.setdefault('workshop', {})['seed'] = args.seed
    if args.sections is not None:
        overrides.setdefault('workshop', {})['sections'] = list(args.sections)
    if args.output_dir is not None:
        overrides.setdefault('output', {})['output_dir'] = args.output_dir
    if args.no_figures:
        overrides.setdefault('output', {})['save_figures'] = False
    return overrides


def resolve_config(args: argparse.Namespace) -> WorkshopConfig:
    """Merge base, scenario and flag overrides into a validated config."""
    overrides = _flag_overrides(args)
    base = args.config
    if base is None and DEFAULT_CONFIG.exists():
        base = DEFAULT_CONFIG
    if base is not None:
        return load_config(base, args.scenario, overrides)

    data: Dict = {}
    if args.scenario is not None and args.scenario.exists():
        with open(args.scenario) as f:
            deep_merge(data, yaml.safe_load(f) or {})
    deep_merge(data, overrides)
    return config_from_dict(data)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = resolve_config(args)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    try:
        configure_logging(args.log_level or config.output.log_level, args.log_file)
    except ValueError as exc:
        parser.error(str(exc))

    logger.info("spatepi %s: sections %s, seed %d",
                __version__, ', '.join(config.workshop.sections),
                config.workshop.seed)
    result = run_workshop(config)
    print(result.summary_path)
    return 0


if __name__ == '__main__':
    sys.exit(main())
