"""Example butter-video config, loaded with `--config example_config.py:CONFIG`."""

from pathlib import Path

from butter_video.config.schema import PipelineConfig, ToolPaths


CONFIG = PipelineConfig(
    tools=ToolPaths(
        butter="/opt/butteraugli/bin/butteraugli",
        ssimulacra="/opt/ssimulacra/ssimulacra",
        ssimulacra2="/opt/libjxl/bin/ssimulacra2",
    ),
    workers=8,
    timeout_sec=120.0,
    scratch_root=Path("/dev/shm"),
)
