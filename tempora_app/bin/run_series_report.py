import argparse
import json
import logging

import pandas as pd

from tempora_app.core.config import AnalysisConfig
from tempora_app.core.config_parser import load_analysis_config
from tempora_app.intelligence_engine.data_structures import TimeSeries
from tempora_app.intelligence_engine.patterns.caching_service import PatternCacheService
from tempora_app.intelligence_engine.patterns.patterns_manager import PatternsManager


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run the series analysis patterns on CSV columns.")
    parser.add_argument("csv_path")
    parser.add_argument("columns", nargs="+", help="value columns, one series each")
    parser.add_argument("--config", help="TOML file with per-analysis settings")
    parser.add_argument("--date-column", help="parse this column as the time index")
    parser.add_argument("--frequency", type=int, default=None, help="observations per cycle")
    parser.add_argument("--start", type=int, nargs=2, metavar=("CYCLE", "POSITION"), default=None)
    parser.add_argument("--exposure-column", help="exposures for a u-chart of the first column")
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--log-level", default="WARNING")
    return parser.parse_args(argv)


def load_series(df: pd.DataFrame, column: str, args) -> TimeSeries:
    if args.date_column:
        values = df.set_index(pd.to_datetime(df[args.date_column]))[column]
        return TimeSeries.from_pandas(values, frequency=args.frequency,
                                      start=tuple(args.start) if args.start else None)
    return TimeSeries(
        values=df[column].to_numpy(dtype=float),
        frequency=args.frequency or 1,
        start=tuple(args.start) if args.start else (1, 1),
    )


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = load_analysis_config(args.config) if args.config else AnalysisConfig()
    df = pd.read_csv(args.csv_path)
    series_by_id = {column: load_series(df, column, args) for column in args.columns}

    kwargs_by_id = {}
    if args.exposure_column:
        exposures = df[args.exposure_column].to_numpy(dtype=float)
        kwargs_by_id[args.columns[0]] = {"rate_control": {"exposures": exposures}}

    manager = PatternsManager(PatternCacheService())
    results = manager.run_batch(series_by_id, config, kwargs_by_id, max_workers=args.workers)

    report = {series_id: [o.to_dict() for o in outputs] for series_id, outputs in results.items()}
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()
