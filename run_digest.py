"""
Batch runner: build every digest summary from the latest snapshot in a data
directory and write one JSON file per summary.

Usage:
    python run_digest.py --data-dir data --out-dir data --html dist/index.html
"""

import argparse
import logging
import sys
from pathlib import Path

# Add the project to path
sys.path.insert(0, str(Path(__file__).parent))

from glucose_digest import (
    AnalysisThresholds,
    SnapshotNotFoundError,
    load_snapshot,
    run_all,
    write_outputs,
    write_dashboard_html,
    DATA_PATH,
)

logger = logging.getLogger("run_digest")


def main(config):
    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    thresholds = AnalysisThresholds(low_mg_dl=config.target_min, high_mg_dl=config.target_max)
    data_dir = Path(config.data_dir)
    out_dir = Path(config.out_dir) if config.out_dir else data_dir

    try:
        snapshot = load_snapshot(data_dir)
    except SnapshotNotFoundError as exc:
        logger.error(str(exc))
        return 1
    previous = load_snapshot(data_dir, previous=True)

    outputs = run_all(snapshot, previous, thresholds)
    for path in write_outputs(outputs, out_dir):
        print(path)

    if config.html:
        print(write_dashboard_html(outputs, Path(config.html)))
    return 0


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Build glucose digest summaries from exported snapshots.")
    ap.add_argument("--data-dir",
                    default=str(DATA_PATH),
                    help="Directory holding ns_entries_*/ns_treatments_*/ns_devicestatus_* "
                         "snapshots and ns_profile_latest.json (default: %(default)s)")
    ap.add_argument("--out-dir",
                    help="Directory for the JSON outputs (default: the data directory)")
    ap.add_argument("--html",
                    help="Also write a static HTML dashboard to this path")
    ap.add_argument("--target-min",
                    type=float,
                    default=70.0,
                    help="Lower bound of the target range in mg/dL (default: %(default)s)")
    ap.add_argument("--target-max",
                    type=float,
                    default=180.0,
                    help="Upper bound of the target range in mg/dL (default: %(default)s)")
    ap.add_argument("-v", "--verbose",
                    action="store_true",
                    help="Log dropped records and written files")

    sys.exit(main(ap.parse_args()))
