"""CLI surface: argparse router and rich-backed output renderer."""

from smarttesthub.ui.cli import CLIError, build_parser, run_cli
from smarttesthub.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIError", "CLIRenderer", "build_parser", "create_renderer", "run_cli"]
