"""
BFF server entry point.
"""

import uvicorn

from bff.app import create_app
from bff.log import configure_logging
from bff.metrics.service import PrometheusMetrics
from bff.settings import global_settings

metrics = PrometheusMetrics() if global_settings.metrics_enabled else None
app = create_app(global_settings, metrics=metrics)


def main() -> None:
    configure_logging(global_settings.log_level)
    uvicorn.run(
        app,
        host=global_settings.host,
        port=global_settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
