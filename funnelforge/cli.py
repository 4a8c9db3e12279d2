#!/usr/bin/env python
"""
FunnelForge CLI - Generate, bundle and inspect funnels.

Usage:
    funnelforge init-db                         # Apply the database schema
    funnelforge generate <funnel_id>            # Resume page generation locally
    funnelforge generate <funnel_id> --api URL  # Trigger and wait on a remote API
    funnelforge bundle <ComponentName> -o out.html
    funnelforge significance 100 10 100 25      # control visitors/conv, test visitors/conv
    funnelforge recompute <funnel_id>           # Rebuild KPI counters from events
"""

import argparse
import json
import logging
import sys

from funnelforge.db.connection import get_connection, init_db
from funnelforge.db.funnel_storage import FunnelStore
from funnelforge.db.models import ArmStats
from funnelforge.errors import FunnelError
from funnelforge.logging_utils import configure_safe_logging
from funnelforge.services.experiment_engine import significance
from funnelforge.services.standalone_bundler import BundleInput, build_standalone_html

logging.basicConfig(level=logging.WARNING)


def _print_progress(progress) -> None:
    print(f"  {progress.pages_ready}/{progress.total_pages} pages ready")


def cmd_init_db(args):
    """Apply schema.sql."""
    init_db()
    print("Schema applied.")


def cmd_generate(args):
    """Generate pending pages for a funnel."""
    if args.api:
        from funnelforge.client import FunnelForgeClient

        client = FunnelForgeClient(base_url=args.api)
        progress = client.wait_for_generation(args.funnel_id, on_progress=_print_progress)
    else:
        from funnelforge.services.brief_orchestrator import BriefOrchestrator

        with get_connection() as conn:
            orchestrator = BriefOrchestrator(FunnelStore(conn))
            progress = orchestrator.generate_pending_pages(args.funnel_id)

    print(f"\n{progress.funnel_id}: {progress.pages_ready}/{progress.total_pages} pages ready")
    if progress.last_error:
        print(f"Stopped on error: {progress.last_error}")
        return 1
    return 0


def cmd_bundle(args):
    """Write the standalone HTML for one page."""
    with get_connection() as conn:
        store = FunnelStore(conn)
        page = store.find_page(args.component_name)
        if page is None or page.source_code is None:
            print(f"Page '{args.component_name}' not found or not generated yet.")
            return 1
        funnel = store.get_funnel(page.funnel_id)

    style = funnel.product_info.style if funnel else None
    pages = funnel.pages if funnel else []
    next_url = None
    if page.component_name in pages:
        index = pages.index(page.component_name)
        if index < len(pages) - 1:
            next_url = f"/f/{pages[index + 1]}"

    html = build_standalone_html(
        BundleInput(
            component_code=page.source_code,
            funnel_id=page.funnel_id,
            page_name=page.component_name,
            api_base=args.api_base,
            next_url=next_url,
            colors=style.colors if style else None,
            fonts=style.fonts if style else None,
            variant=args.variant,
        )
    )
    with open(args.output, "w", encoding="utf-8") as f:
        f.write(html)
    print(f"Wrote {len(html)} bytes to {args.output}")
    return 0


def cmd_significance(args):
    """Two-proportion z-test confidence for raw arm counts."""
    control = ArmStats(visitors=args.control_visitors, conversions=args.control_conversions)
    test = ArmStats(visitors=args.test_visitors, conversions=args.test_conversions)
    confidence = significance(control, test)
    if args.json:
        print(json.dumps({"confidence": confidence, "significant": confidence >= args.threshold}))
    else:
        verdict = "significant" if confidence >= args.threshold else "not significant"
        print(f"Confidence: {confidence:.4f} ({verdict} at {args.threshold})")
    return 0


def cmd_recompute(args):
    """Rebuild KPI counters from the event log."""
    from funnelforge.services.telemetry_ingest import TelemetryIngest

    with get_connection() as conn:
        kpis = TelemetryIngest(FunnelStore(conn)).recompute_kpis(args.funnel_id)
    print(json.dumps(kpis.model_dump(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="funnelforge",
        description="FunnelForge CLI - Generate, bundle and inspect funnels",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  funnelforge generate acme-widget-x1y2z3
  funnelforge generate acme-widget-x1y2z3 --api https://funnels.example.com
  funnelforge bundle AcmeWidgetLanding -o landing.html
  funnelforge significance 100 10 100 25
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    # init-db
    p_init = subparsers.add_parser("init-db", help="Apply the database schema")
    p_init.set_defaults(func=cmd_init_db)

    # generate
    p_generate = subparsers.add_parser("generate", help="Generate pending pages")
    p_generate.add_argument("funnel_id", help="Funnel ID")
    p_generate.add_argument("--api", help="Remote API base URL (trigger and poll instead of running locally)")
    p_generate.set_defaults(func=cmd_generate)

    # bundle
    p_bundle = subparsers.add_parser("bundle", help="Write a page as standalone HTML")
    p_bundle.add_argument("component_name", help="Page component name")
    p_bundle.add_argument("-o", "--output", required=True, help="Output HTML file")
    p_bundle.add_argument("--api-base", default="http://localhost:8000", help="Telemetry API base URL")
    p_bundle.add_argument("--variant", choices=["control", "test"], help="Variant tag for telemetry")
    p_bundle.set_defaults(func=cmd_bundle)

    # significance
    p_sig = subparsers.add_parser("significance", help="Check A/B significance from raw counts")
    p_sig.add_argument("control_visitors", type=int)
    p_sig.add_argument("control_conversions", type=int)
    p_sig.add_argument("test_visitors", type=int)
    p_sig.add_argument("test_conversions", type=int)
    p_sig.add_argument("-t", "--threshold", type=float, default=0.95, help="Significance threshold")
    p_sig.add_argument("--json", action="store_true", help="Print JSON")
    p_sig.set_defaults(func=cmd_significance)

    # recompute
    p_recompute = subparsers.add_parser("recompute", help="Rebuild KPI counters from events")
    p_recompute.add_argument("funnel_id", help="Funnel ID")
    p_recompute.set_defaults(func=cmd_recompute)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.verbose:
        configure_safe_logging(level=logging.INFO)

    try:
        return args.func(args) or 0
    except FunnelError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
