"""
Build entry point.

  chapelsite data      fetch feeds, write _data/sermons.json + calendar.json
  chapelsite images    rewrite <img> tags in the generated _site
  chapelsite build     both, in that order

Feed and image failures are reported but never fail the build.
"""
import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path

from .config import ConfigError
from .context import BuildContext
from .events import load_events
from .images import OptimizeReport, optimize_site
from .sermons import SermonCollection, load_sermons

SERMONS_FILENAME = "sermons.json"
CALENDAR_FILENAME = "calendar.json"


@dataclass
class BuildReport:
    sermons: SermonCollection | None = None
    events: list | None = None
    images: OptimizeReport | None = None


def write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def run_data(ctx: BuildContext, report: BuildReport | None = None) -> BuildReport:
    """Run both feed ingestors and write their JSON data files."""
    report = report or BuildReport()
    data_dir = Path(ctx.cfg["data_dir"])

    report.sermons = load_sermons(ctx)
    sermons_path = data_dir / SERMONS_FILENAME
    write_json(sermons_path, report.sermons.to_dict())
    ctx.log(f"Wrote {sermons_path}")

    report.events = load_events(ctx)
    calendar_path = data_dir / CALENDAR_FILENAME
    write_json(calendar_path, [e.to_dict() for e in report.events])
    ctx.log(f"Wrote {calendar_path}")

    return report


def run_images(ctx: BuildContext, report: BuildReport | None = None) -> BuildReport:
    report = report or BuildReport()
    report.images = optimize_site(ctx)
    return report


def run_build(ctx: BuildContext) -> BuildReport:
    """Full pipeline: fresh context state, feeds, then the image pass."""
    ctx.reset()
    report = run_data(ctx)
    if Path(ctx.cfg["site_dir"]).is_dir():
        run_images(ctx, report)
    else:
        print(f"WARNING: site directory {ctx.cfg['site_dir']} does not exist; skipping images", file=sys.stderr)
    return report


def _parse_args(argv):
    p = argparse.ArgumentParser(prog="chapelsite", description="Build-time content pipeline for the church website.")
    p.add_argument("command", nargs="?", default="build", choices=("data", "images", "build"))
    p.add_argument("-c", "--config", type=Path, default=None, help="Path to config.yml (default: ./config.yml).")
    p.add_argument("-q", "--quiet", action="store_true", help="Only print warnings.")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)

    try:
        ctx = BuildContext.from_config_file(args.config, quiet=args.quiet)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if args.command == "data":
        run_data(ctx)
    elif args.command == "images":
        try:
            report = run_images(ctx)
        except FileNotFoundError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        ctx.log(
            f"{report.images.images_processed} images optimized in "
            f"{report.images.files_rewritten} of {report.images.files_scanned} files"
        )
    else:
        run_build(ctx)
    return 0


if __name__ == "__main__":
    sys.exit(main())
