"""CLI job that builds the project map for an organization and reports or exports it."""

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from projectmap.core.db import close_pool
from projectmap.map.render import describe_cluster, marker_feature
from projectmap.map.session import MapSession

logger = logging.getLogger(__name__)


def to_feature_collection(session: MapSession) -> Dict[str, Any]:
    features = [marker_feature(describe_cluster(cluster), cluster.members) for cluster in session.clusters]
    return {"type": "FeatureCollection", "features": features}


def write_feature_collection(payload: Dict[str, Any], output: Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=2)
    logger.info("Saved %d markers to %s", len(payload["features"]), output)


async def run_map_job(
    *,
    organization_id: str,
    status: str = "all",
    project_ids: Optional[List[str]] = None,
    watch_seconds: float = 0,
    inspect: bool = False,
    output: Optional[Path] = None,
    session: Optional[MapSession] = None,
) -> Dict[str, Any]:
    if not organization_id or not organization_id.strip():
        raise ValueError("organization_id is required")

    session = session or MapSession(organization_id.strip())
    session.set_filter(status=status, project_ids=project_ids)
    await session.start(subscribe=watch_seconds > 0)
    try:
        if session.error:
            raise RuntimeError(session.error)

        if watch_seconds > 0:
            logger.info("Watching project changes for %.0f seconds", watch_seconds)
            await asyncio.sleep(watch_seconds)

        if inspect and session.clusters:
            marker_id = session.clusters[0].coordinate_key
            await session.controller.click(marker_id)

        view = session.render()
        logger.info(
            "Status: %s, showing %d markers for %s",
            session.selected_status,
            len(view["markers"]),
            view["count_label"],
        )
        if view["viewport"] is not None:
            logger.info("Viewport bounds=%s padding=%s max_zoom=%s", view["viewport"].bounds, view["viewport"].padding, view["viewport"].max_zoom)
        footprint = view["footprint"]
        if footprint is not None and footprint.has_data:
            kind = "Est. lot size" if footprint.is_approximate else "Approx. area"
            logger.info("%s: %s sq ft", kind, f"{round(footprint.area_estimate):,}")

        if output is not None:
            write_feature_collection(to_feature_collection(session), output)
        return view
    finally:
        await session.close()
        close_pool()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Build the project map for an organization")
    parser.add_argument("--org", dest="organization_id", required=True, help="Organization id")
    parser.add_argument("--status", dest="status", default="all", help="Only show projects with this status")
    parser.add_argument("--ids", dest="project_ids", nargs="*", help="Only show these project ids")
    parser.add_argument(
        "--watch",
        dest="watch_seconds",
        type=float,
        default=0,
        help="Follow the change feed for this many seconds before reporting",
    )
    parser.add_argument("--inspect", action="store_true", help="Activate the first marker and load its footprint")
    parser.add_argument("--output", dest="output", type=Path, help="Write markers as a GeoJSON FeatureCollection")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args()

    asyncio.run(
        run_map_job(
            organization_id=args.organization_id,
            status=args.status,
            project_ids=args.project_ids,
            watch_seconds=args.watch_seconds,
            inspect=args.inspect,
            output=args.output,
        )
    )


if __name__ == "__main__":
    main()
