import json

import numpy as np
import pandas as pd

from tempora_app.bin.run_series_report import main


def test_report_from_csv(tmp_path, capsys):
    t = np.arange(48)
    df = pd.DataFrame({
        "month": pd.date_range("2019-01-01", periods=48, freq="MS").strftime("%Y-%m-%d"),
        "visits": 200 + 2 * t + 15 * np.sin(2 * np.pi * t / 12),
        "errors": np.full(48, 12.0),
        "requests": np.full(48, 1000.0),
    })
    csv_path = tmp_path / "metrics.csv"
    df.to_csv(csv_path, index=False)
    config_path = tmp_path / "analysis.toml"
    config_path.write_text("[breakpoints]\nmax_breaks = 2\n")

    main([str(csv_path), "errors", "visits", "--date-column", "month",
          "--config", str(config_path), "--exposure-column", "requests", "--workers", "2"])

    report = json.loads(capsys.readouterr().out)
    assert list(report) == ["errors", "visits"]
    rate = [o for o in report["errors"] if o["pattern_name"] == "rate_control"][0]
    assert rate["results"]["chart"]["chart_type"] == "u"
    seasonal = [o for o in report["visits"] if o["pattern_name"] == "seasonal_decomposition"][0]
    assert seasonal["results"]["decomposition"]["frequency"] == 12
