"""
Command-line entry point for the curvature analysis steps.

Usage:
    curvesafety fetch-roads --input curve_accidents.parquet [--batch-size 100]
    curvesafety curvature [--input around_roads.parquet] [--headon headon_collisions.parquet]
    curvesafety clusters --input headon_collisions.parquet [--radius 10 --min-pts 4]
"""

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .core.config import settings
from .core.logging_setup import configure_logging
from .services.batch_storage import BatchStorage
from .services.cluster_sweep import ClusterSweep, cluster_centroids
from .services.curvature_service import compute_road_curvatures, label_headon, summarize_curvatures
from .services.geodesy import Geodesy
from .services.road_fetcher import BatchStatus, RoadFetcher
from .sources.overpass_source import OverpassRoadSource

logger = logging.getLogger(__name__)


def read_table(path: str) -> pd.DataFrame:
    """Read a parquet or CSV table depending on the file suffix."""
    if Path(path).suffix.lower() == ".csv":
        return pd.read_csv(path)
    return pd.read_parquet(path, engine='pyarrow')


def write_table(dataframe: pd.DataFrame, path: str) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    if Path(path).suffix.lower() == ".csv":
        dataframe.to_csv(path, index=False)
    else:
        dataframe.to_parquet(path, engine='pyarrow', index=False, compression='snappy')


def cmd_fetch_roads(args) -> int:
    storage = BatchStorage(args.storage_path, index_width=args.index_width)
    source = OverpassRoadSource({'crop': args.crop})
    fetcher = RoadFetcher(source, storage, batch_size=args.batch_size, search_radius=args.radius)

    points = read_table(args.input)
    records = fetcher.run(points)
    combined = fetcher.combine(records)

    failed = [r.batch_index for r in records if r.status == BatchStatus.FAILED]
    print(f"Batches: {len(records)} total, {len(failed)} failed {failed if failed else ''}")
    print(f"Accidents with roads: {len(combined)} -> {storage.combined_path}")
    return 0


def cmd_curvature(args) -> int:
    storage = BatchStorage(args.storage_path)
    around_roads = read_table(args.input) if args.input else storage.load_combined()

    curvatures = compute_road_curvatures(
        around_roads,
        path_distance=args.path_distance,
        geodesy=Geodesy(),
        end_policy=args.end_policy,
    )
    write_table(curvatures, args.output)

    summary = summarize_curvatures(curvatures["curvature"])
    print(f"Curvatures: {summary['valid']} valid, {summary['undefined']} undefined -> {args.output}")

    if args.headon:
        labeled = label_headon(curvatures, read_table(args.headon))
        labeled_path = str(Path(args.output).with_name(Path(args.output).stem + "_labeled" + Path(args.output).suffix))
        write_table(labeled, labeled_path)
        print(f"Head-on labels -> {labeled_path}")
    return 0


def cmd_clusters(args) -> int:
    points = read_table(args.input)
    sweep = ClusterSweep(args.radius_grid, args.min_pts_grid, max_workers=args.workers)

    table = sweep.sweep(points)
    print(table.to_string(index=False))

    clustered = sweep.select(args.radius, args.min_pts)
    write_table(clustered, args.output)
    print(f"Selected radius={args.radius} min_pts={args.min_pts}: {len(clustered)} clustered points -> {args.output}")

    if args.centroids:
        write_table(cluster_centroids(clustered), args.centroids)
        print(f"Centroids -> {args.centroids}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Road curvature and collision cluster analysis')
    parser.add_argument(
        '--log-level',
        default=settings.LOG_LEVEL,
        help=f'Logging level (default: {settings.LOG_LEVEL})'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    fetch = subparsers.add_parser('fetch-roads', help='Fetch roads around accident points in batches')
    fetch.add_argument('--input', required=True, help='Accident points (parquet/csv with longitude, latitude)')
    fetch.add_argument('--storage-path', default=settings.INTERMEDIATE_DATA_DIR,
                       help=f'Directory for batch files (default: {settings.INTERMEDIATE_DATA_DIR})')
    fetch.add_argument('--batch-size', type=int, default=settings.FETCH_BATCH_SIZE,
                       help=f'Points per batch (default: {settings.FETCH_BATCH_SIZE})')
    fetch.add_argument('--index-width', type=int, default=settings.BATCH_INDEX_WIDTH,
                       help=f'Digits of the batch index in file names (default: {settings.BATCH_INDEX_WIDTH})')
    fetch.add_argument('--radius', type=float, default=settings.ROAD_SEARCH_RADIUS,
                       help=f'Search radius in metres (default: {settings.ROAD_SEARCH_RADIUS})')
    fetch.add_argument('--crop', action='store_true', help='Clip roads to the search circle')
    fetch.set_defaults(func=cmd_fetch_roads)

    curv = subparsers.add_parser('curvature', help='Compute road curvature at accident points')
    curv.add_argument('--input', help='Combined road table, parquet only (default: combined file in storage path)')
    curv.add_argument('--storage-path', default=settings.INTERMEDIATE_DATA_DIR)
    curv.add_argument('--output', default=str(Path(settings.INTERMEDIATE_DATA_DIR) / 'road_curvatures.parquet'))
    curv.add_argument('--path-distance', type=float, default=settings.PATH_DISTANCE,
                      help=f'Sample offset along the road (default: {settings.PATH_DISTANCE})')
    curv.add_argument('--end-policy', choices=['clamp', 'null'], default=settings.SAMPLE_END_POLICY)
    curv.add_argument('--headon', help='Table of head-on collision keys; writes a labeled table too')
    curv.set_defaults(func=cmd_curvature)

    clus = subparsers.add_parser('clusters', help='DBSCAN parameter sweep and selection')
    clus.add_argument('--input', required=True, help='Accident points (parquet/csv with longitude, latitude)')
    clus.add_argument('--output', default=str(Path(settings.INTERMEDIATE_DATA_DIR) / 'clustered_points.parquet'))
    clus.add_argument('--centroids', help='Optional output path for cluster centroids')
    clus.add_argument('--radius-grid', type=float, nargs='+', default=settings.DBSCAN_RADIUS_GRID)
    clus.add_argument('--min-pts-grid', type=int, nargs='+', default=settings.DBSCAN_MIN_PTS_GRID)
    clus.add_argument('--radius', type=float, default=settings.SELECTED_RADIUS)
    clus.add_argument('--min-pts', type=int, default=settings.SELECTED_MIN_PTS)
    clus.add_argument('--workers', type=int, default=1, help='Threads for the grid evaluation')
    clus.set_defaults(func=cmd_clusters)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    # CSV flattens the per-row road lists into plain strings
    if args.command == 'curvature' and args.input and Path(args.input).suffix.lower() == '.csv':
        parser.error('curvature --input must be a parquet file')
    configure_logging(args.log_level)
    return args.func(args)


if __name__ == '__main__':
    raise SystemExit(main())
